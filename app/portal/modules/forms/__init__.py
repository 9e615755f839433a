"""
Forms module.

- Users with forms.create build forms out of typed fields plus submission settings.
- Non-admins see forms they created and public forms; only owner/admin may edit or delete.
- Inactive forms stay visible to their owner but stop accepting submissions.
"""
