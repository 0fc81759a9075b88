"""Synchronous command dispatch.

The memory provider gives each unit of work a private copy of the whole
store and swaps that copy back in on commit, so two units of work that
overlap in time lose one side's writes whatever aggregates they touch.
``dispatch`` runs every command under ``unit_of_work_lock``: one unit of
work loads, changes and commits at a time. Nothing slow (gateway calls,
notifications) ever runs inside a command.
"""

from protean.utils.globals import current_domain

from marketplace.utils.locks import unit_of_work_lock


def dispatch(command):
    """Process ``command`` synchronously and return the handler's result."""
    with unit_of_work_lock:
        return current_domain.process(command, asynchronous=False)
