"""
Ordered list of sites with stable handles.

The list order always matches the curve parameter axis: the head is the site
closest to u=0 and the tail the one closest to u=1. Sites are inserted only
at the matching end or between two neighbours, never re-sorted.
"""

from typing import Iterable, Iterator

import numpy as np

from metrack.tracking.site import Site


class SiteNode:
    """Stable handle on one element of a SiteList."""

    __slots__ = ("site", "prev", "next", "owner")

    def __init__(self, site: Site, owner: "SiteList"):
        self.site = site
        self.prev: SiteNode | None = None
        self.next: SiteNode | None = None
        self.owner: SiteList | None = owner


class SiteList:
    """
    Doubly-linked list of sites.

    Head/tail insertion, insertion after a handle and erasure of a handle
    are all O(1). Positional walks go through an explicit SiteCursor.

    Example:
        >>> sites = SiteList([Site(0, 0), Site(0, 10)])
        >>> cur = sites.cursor()
        >>> node = cur.insert_after(Site(0, 5))
        >>> [s.col for s in sites]
        [0, 5, 10]
    """

    def __init__(self, sites: Iterable[Site] | None = None):
        self._head: SiteNode | None = None
        self._tail: SiteNode | None = None
        self._size = 0
        if sites is not None:
            for site in sites:
                self.push_back(site)

    def __len__(self) -> int:
        return self._size

    def __bool__(self) -> bool:
        return self._size > 0

    def __iter__(self) -> Iterator[Site]:
        node = self._head
        while node is not None:
            nxt = node.next
            yield node.site
            node = nxt

    def __reversed__(self) -> Iterator[Site]:
        node = self._tail
        while node is not None:
            prv = node.prev
            yield node.site
            node = prv

    def nodes(self) -> Iterator[SiteNode]:
        node = self._head
        while node is not None:
            nxt = node.next
            yield node
            node = nxt

    @property
    def head(self) -> SiteNode | None:
        return self._head

    @property
    def tail(self) -> SiteNode | None:
        return self._tail

    def first(self) -> Site | None:
        return self._head.site if self._head is not None else None

    def last(self) -> Site | None:
        return self._tail.site if self._tail is not None else None

    def push_front(self, site: Site) -> SiteNode:
        node = SiteNode(site, self)
        node.next = self._head
        if self._head is not None:
            self._head.prev = node
        else:
            self._tail = node
        self._head = node
        self._size += 1
        return node

    def push_back(self, site: Site) -> SiteNode:
        node = SiteNode(site, self)
        node.prev = self._tail
        if self._tail is not None:
            self._tail.next = node
        else:
            self._head = node
        self._tail = node
        self._size += 1
        return node

    def insert_after(self, handle: SiteNode, site: Site) -> SiteNode:
        """Insert ``site`` right after ``handle`` and return its handle."""
        self._check_handle(handle)
        if handle is self._tail:
            return self.push_back(site)
        node = SiteNode(site, self)
        node.prev = handle
        node.next = handle.next
        handle.next.prev = node
        handle.next = node
        self._size += 1
        return node

    def erase(self, handle: SiteNode) -> SiteNode | None:
        """Remove ``handle`` from the list and return the following handle."""
        self._check_handle(handle)
        nxt = handle.next
        if handle.prev is not None:
            handle.prev.next = handle.next
        else:
            self._head = handle.next
        if handle.next is not None:
            handle.next.prev = handle.prev
        else:
            self._tail = handle.prev
        handle.prev = handle.next = None
        handle.owner = None
        self._size -= 1
        return nxt

    def pop_front(self) -> Site:
        if self._head is None:
            raise IndexError("pop from an empty SiteList")
        site = self._head.site
        self.erase(self._head)
        return site

    def pop_back(self) -> Site:
        if self._tail is None:
            raise IndexError("pop from an empty SiteList")
        site = self._tail.site
        self.erase(self._tail)
        return site

    def clear(self) -> None:
        for node in list(self.nodes()):
            node.prev = node.next = None
            node.owner = None
        self._head = self._tail = None
        self._size = 0

    def replace(self, sites: Iterable[Site]) -> None:
        """Discard the current content and append ``sites`` in order."""
        self.clear()
        for site in sites:
            self.push_back(site)

    def remove_if(self, predicate) -> int:
        """Erase every site matching ``predicate``; return how many were erased."""
        removed = 0
        cur = self.cursor()
        while cur.valid:
            if predicate(cur.site):
                cur.erase()
                removed += 1
            else:
                cur.advance()
        return removed

    def cursor(self, node: SiteNode | None = None) -> "SiteCursor":
        """Cursor positioned on ``node``, or on the head by default."""
        if node is None:
            return SiteCursor(self, self._head)
        self._check_handle(node)
        return SiteCursor(self, node)

    def cursor_at_end(self) -> "SiteCursor":
        """Cursor positioned on the tail."""
        return SiteCursor(self, self._tail)

    def as_array(self) -> np.ndarray:
        """Site positions as an (N, 2) array of (row, col)."""
        if self._size == 0:
            return np.empty((0, 2), dtype=np.float64)
        return np.array([(s.row, s.col) for s in self], dtype=np.float64)

    def _check_handle(self, handle: SiteNode) -> None:
        if handle.owner is not self:
            raise ValueError("Handle does not belong to this SiteList")


class SiteCursor:
    """
    Explicit position in a SiteList.

    A cursor whose node is None is outside the list (past either end).
    """

    def __init__(self, sites: SiteList, node: SiteNode | None):
        self._sites = sites
        self.node = node

    @property
    def valid(self) -> bool:
        return self.node is not None

    @property
    def site(self) -> Site:
        if self.node is None:
            raise IndexError("Cursor is outside the list")
        return self.node.site

    @property
    def next_site(self) -> Site | None:
        if self.node is None or self.node.next is None:
            return None
        return self.node.next.site

    @property
    def has_next(self) -> bool:
        return self.node is not None and self.node.next is not None

    def advance(self) -> None:
        if self.node is not None:
            self.node = self.node.next

    def retreat(self) -> None:
        if self.node is not None:
            self.node = self.node.prev

    def erase(self) -> None:
        """Remove the current site and move to the following one."""
        if self.node is None:
            raise IndexError("Cursor is outside the list")
        self.node = self._sites.erase(self.node)

    def erase_backward(self) -> None:
        """Remove the current site and move to the preceding one."""
        if self.node is None:
            raise IndexError("Cursor is outside the list")
        prev = self.node.prev
        self._sites.erase(self.node)
        self.node = prev

    def insert_after(self, site: Site) -> SiteNode:
        """Insert after the current site; the cursor does not move."""
        if self.node is None:
            raise IndexError("Cursor is outside the list")
        return self._sites.insert_after(self.node, site)
