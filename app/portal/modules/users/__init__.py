"""
User administration (requires users.manage).
"""
