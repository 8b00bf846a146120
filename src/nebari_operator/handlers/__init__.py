"""
Handlers package - Contains the Kopf event handlers for NebariApp resources.

- nebariapp.py: create/resume/update/delete and periodic re-verification,
  all funnelled into a single reconcile call per object
"""
