"""
auth — dashboard accounts.

Provides:
  • Signed bearer tokens and OAuth ``state`` values
  • bcrypt password hashing
  • Register / login / me API routes
  • ``get_current_user_id`` FastAPI dependency
"""
