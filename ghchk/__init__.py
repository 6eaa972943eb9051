"""
gh-chk - Check on GitHub issues and pull requests from the command line.

Assignee tracking:
1. Fetches the assignment timeline of each tracked issue or PR
2. Replays it into the set of current assignees
3. Compares that set with the snapshot saved by the previous run
4. Saves the new snapshot and reports who was added or removed

Usage:
    gh-chk track-assignees owner/repo#123 ...   # Track assignees
    gh-chk snapshots                            # List stored snapshots
"""

__version__ = "0.1.0"
__author__ = "gh-chk"
