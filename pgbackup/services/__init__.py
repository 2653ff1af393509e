"""Service layer: artifact lookup, retention, plan resolution and execution.

Exposes:
- find_latest
- apply_retention / select_for_deletion
- build_plan / infer_mode
- BackupRunner
"""
