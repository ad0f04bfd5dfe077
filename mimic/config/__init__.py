"""Config — declaration models, loading, and per-host resolution.

Resolution is a pure function of the config source and the host:
- Overlay: host variables replace base variables; host lists append
- Role filtering: skip_roles wins over only_roles
- Validation: active dotfile targets must be unique
"""
