"""
Lifetime manager module

Handle table bridging native objects to the opaque integer ids the host
sees. Ids are monotonic and never reused; 0 is reserved for "no object".
"""

from dataclasses import dataclass
from typing import Callable, Iterator, Optional
import logging

from .errors import InvalidHandle, DoubleRelease
from .ir import EXCLUSIVE, SHARED, BORROWED, OWNERSHIPS

logger = logging.getLogger(__name__)

NULL_HANDLE = 0

Destructor = Callable[[object], None]


@dataclass
class HandleEntry:
    """One live handle"""
    id: int
    obj: object
    ownership: str
    class_tag: str
    refcount: int = 1
    destructor: Optional[Destructor] = None
    native_held: bool = False

    @property
    def address(self) -> int:
        return id(self.obj)


class HandleTable:
    """Maps handle ids to native objects with their ownership mode"""

    def __init__(self):
        self._entries: dict[int, HandleEntry] = {}
        self._owners: dict[int, int] = {}     # address -> owning handle id
        self._borrowed: dict[int, int] = {}   # address -> borrowed handle id
        self._next_id = 1

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HandleEntry]:
        return iter(list(self._entries.values()))

    @property
    def live_count(self) -> int:
        return len(self._entries)

    def is_live(self, handle_id: int) -> bool:
        return handle_id in self._entries

    # --------------------------------------------------------------------------
    # Registration
    # --------------------------------------------------------------------------

    def register(self, obj: object, ownership: str, class_tag: str,
                 destructor: Optional[Destructor] = None, native_held: bool = False) -> int:
        """Allocate a new handle id for an object

        A native-held shared entry only lends references to the host: the
        last release retires the id and leaves the object to its native owner.
        """
        if ownership not in OWNERSHIPS:
            raise ValueError(f'unknown ownership {ownership!r}')
        handle_id = self._next_id
        self._next_id += 1
        entry = HandleEntry(handle_id, obj, ownership, class_tag,
                            destructor=destructor if ownership != BORROWED else None,
                            native_held=native_held and ownership == SHARED)
        self._entries[handle_id] = entry
        if ownership == BORROWED:
            self._borrowed[entry.address] = handle_id
        else:
            self._owners[entry.address] = handle_id
        logger.debug('register #%d %s %s', handle_id, ownership, class_tag)
        return handle_id

    def produce(self, obj: object, ownership: str, class_tag: str,
                destructor: Optional[Destructor] = None) -> int:
        """Handle for an object crossing to the host

        An object that is already live keeps its id: an exclusive owner is
        handed out again, a shared owner gains a reference, a borrowed view
        is reused. A shared object seen for the first time is native-held.
        """
        address = id(obj)
        owner_id = self._owners.get(address)
        owner = self._entries[owner_id] if owner_id is not None else None

        if ownership == EXCLUSIVE:
            if owner is not None and owner.ownership == EXCLUSIVE:
                return owner.id
            if owner is not None:
                return self.produce(obj, BORROWED, class_tag)
        elif ownership == SHARED:
            if owner is not None and owner.ownership == SHARED:
                self.retain(owner.id)
                return owner.id
            if owner is not None:
                raise InvalidHandle(
                    f'{class_tag} object is exclusively owned by handle #{owner.id}, cannot share it')
        elif ownership == BORROWED:
            borrowed_id = self._borrowed.get(address)
            if borrowed_id is not None:
                return borrowed_id
        return self.register(obj, ownership, class_tag, destructor, native_held=ownership == SHARED)

    # --------------------------------------------------------------------------
    # Lookup
    # --------------------------------------------------------------------------

    def entry(self, handle_id: int) -> HandleEntry:
        entry = self._entries.get(handle_id)
        if entry is None:
            if self._is_retired(handle_id):
                raise InvalidHandle(f'handle #{handle_id} has been released')
            raise InvalidHandle(f'handle #{handle_id} is unknown')
        return entry

    def resolve(self, handle_id: int) -> object:
        """Native object behind a live handle"""
        return self.entry(handle_id).obj

    def address_of(self, handle_id: int) -> int:
        return self.entry(handle_id).address

    def class_of(self, handle_id: int) -> str:
        return self.entry(handle_id).class_tag

    def ownership_of(self, handle_id: int) -> str:
        return self.entry(handle_id).ownership

    def describe(self, handle_id: int) -> tuple[str, str]:
        """(class tag, ownership) of a live handle"""
        entry = self.entry(handle_id)
        return entry.class_tag, entry.ownership

    def refcount(self, handle_id: int) -> int:
        return self.entry(handle_id).refcount

    def _is_retired(self, handle_id: int) -> bool:
        return 0 < handle_id < self._next_id and handle_id not in self._entries

    # --------------------------------------------------------------------------
    # Ownership
    # --------------------------------------------------------------------------

    def retain(self, handle_id: int):
        """Add a reference to a shared handle; borrowed handles ignore it"""
        entry = self.entry(handle_id)
        if entry.ownership == SHARED:
            entry.refcount += 1
            logger.debug('retain #%d -> %d', handle_id, entry.refcount)
        elif entry.ownership == EXCLUSIVE:
            raise InvalidHandle(f'handle #{handle_id} is exclusive and cannot be retained')

    def hold_natively(self, handle_id: int):
        """Mark a shared handle as owned by native code as well"""
        entry = self.entry(handle_id)
        if entry.ownership != SHARED:
            raise InvalidHandle(f'handle #{handle_id} is {entry.ownership}, not shared')
        entry.native_held = True

    def release(self, handle_id: int) -> bool:
        """Drop a reference; returns True if the native object was destroyed

        The last release of a native-held handle retires the id without
        destroying anything.
        """
        entry = self._entries.get(handle_id)
        if entry is None:
            if self._is_retired(handle_id):
                raise DoubleRelease(f'handle #{handle_id} was already released')
            raise InvalidHandle(f'cannot release unknown handle #{handle_id}')

        if entry.ownership == BORROWED:
            return False
        if entry.ownership == SHARED:
            entry.refcount -= 1
            logger.debug('release #%d -> %d', handle_id, entry.refcount)
            if entry.refcount > 0:
                return False
            if entry.native_held:
                self._drop(entry)
                logger.debug('retire #%d %s, held natively', handle_id, entry.class_tag)
                return False
        self._destroy(entry)
        return True

    def unregister(self, handle_id: int):
        """Invalidate a handle without destroying its object"""
        entry = self.entry(handle_id)
        self._drop(entry)
        logger.debug('unregister #%d %s', handle_id, entry.class_tag)

    def _drop(self, entry: HandleEntry):
        del self._entries[entry.id]
        index = self._borrowed if entry.ownership == BORROWED else self._owners
        if index.get(entry.address) == entry.id:
            del index[entry.address]

    def _destroy(self, entry: HandleEntry):
        # the table is consistent before the destructor runs, so re-entrant
        # releases of the same id see DoubleRelease
        self._drop(entry)
        borrowed_id = self._borrowed.get(entry.address)
        if borrowed_id is not None:
            self._drop(self._entries[borrowed_id])
        logger.debug('destroy #%d %s', entry.id, entry.class_tag)
        if entry.destructor is not None:
            entry.destructor(entry.obj)
