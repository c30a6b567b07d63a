"""Workflows over the registry, the filesystem and the remote API.

Managers take a ``SyncContext`` and raise domain exceptions
(``quantsync.workspace.errors``).  Only problems that do not stop the
workflow (one file of many failing to upload, a project that can not be
re-linked) are reported through the context's prompter directly; turning
raised errors into messages is the command surface's job.
"""
