"""Alerting — threshold evaluation and alert lifecycle for oxygen tanks.

Pure, synchronous logic over in-memory records. No I/O happens here:
persistence, locking and notification delivery live in services/.

  1. evaluator.evaluate + evaluator.reconcile: reading -> creation requests
  2. lifecycle.*: state transitions on Alert records
"""
