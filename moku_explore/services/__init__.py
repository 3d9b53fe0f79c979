"""
Moku Explore Services

- RequestOrchestrator: cancellable fan-out with streaming publication
- FeedAssembler: the Explore feed state machine
- LibraryActions: optimistic add-to-library with server reconciliation
"""

from .orchestrator import BatchOutcome, RequestOrchestrator
from .feed_service import FeedAssembler
from .library_actions import LibraryActions

__all__ = ['BatchOutcome', 'RequestOrchestrator', 'FeedAssembler', 'LibraryActions']
