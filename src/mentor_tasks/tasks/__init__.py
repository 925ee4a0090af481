"""
Task subsystem.

Components:
- task_models.py: data structures (User, TaskTemplate, Task, Submission, reports)
- task_store.py: SQLite-backed storage with idempotent insert and compare-and-swap
- lifecycle.py: status transitions (pending / incomplete / completed)
- distributor.py: direct and scheduled assignment of templates to interns
- submission.py: evidence upload + atomic completion
- task_scheduler.py: cron trigger and an optional in-process polling loop
- task_api.py: operations used by the console and any other front end
"""
