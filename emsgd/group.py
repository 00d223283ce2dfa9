"""Group membership state machine.

Members and admins are independent address sets. Every accepted call
appends exactly one system event, including the idempotent admin calls that
leave state unchanged; rejected calls change nothing and log nothing.
Mutations of one group are serialized so concurrent admins cannot lose each
other's updates.
"""

import logging
import threading
from typing import Callable, Iterable, Optional

from . import events
from .address import validate_address
from .errors import AlreadyMember, GroupExists, GroupNotFound, MissingFields, NotGroupAdmin, NotMember
from .events import SystemEventLog
from .models import Group

logger = logging.getLogger(__name__)

# A transition edits the group in place and returns (event kind, subject).
Transition = Callable[[Group], tuple[str, str]]


def _dedupe(addresses: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(addresses))


class GroupRegistry:
    def __init__(self, store, event_log: SystemEventLog):
        self.store = store
        self.events = event_log
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, group_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(group_id)
            if lock is None:
                lock = self._locks[group_id] = threading.Lock()
            return lock

    def get(self, group_id: str) -> Optional[Group]:
        return self.store.get_group(group_id)

    def require(self, group_id: str) -> Group:
        group = self.store.get_group(group_id)
        if group is None:
            raise GroupNotFound(f"group not found: {group_id}")
        return group

    def create_group(self, group_id: str, name: str, description: str = "",
                     display_picture: str = "", members: Iterable[str] = (),
                     creator: str = "") -> Group:
        if not group_id or not name:
            raise MissingFields("missing required fields: id, name")
        members = _dedupe(members)
        for address in members:
            validate_address(address)
        admins = []
        if creator:
            if creator not in members:
                members.append(creator)
            admins.append(creator)
        with self._lock_for(group_id):
            if self.store.get_group(group_id) is not None:
                raise GroupExists(f"group already exists: {group_id}")
            group = Group(id=group_id, name=name, description=description,
                          display_picture=display_picture, members=members, admins=admins)
            self.store.put_group(group)
            event = self.events.append(events.GROUP_CREATED, group_id, creator)
        self.events.notify(event)
        return group

    def _mutate(self, group_id: str, transition: Transition, actor: Optional[str] = None) -> Group:
        """Apply one transition under the group's lock.

        With `actor` set, admin rights are checked against the state loaded
        under the lock.
        """
        # unknown ids never get a lock entry
        self.require(group_id)
        with self._lock_for(group_id):
            group = self.require(group_id)
            if actor is not None and not group.is_admin(actor):
                raise NotGroupAdmin(f"{actor} is not an admin of group {group_id}")
            kind, subject = transition(group)
            self.store.put_group(group)
            event = self.events.append(kind, group_id, subject)
        self.events.notify(event)
        return group

    # --- Membership ---

    def add_member(self, group_id: str, address: str, actor: Optional[str] = None) -> Group:
        validate_address(address)

        def transition(group: Group):
            if address in group.members:
                raise AlreadyMember(f"{address} is already in group {group_id}")
            group.members.append(address)
            return events.USER_JOINED, address

        return self._mutate(group_id, transition, actor)

    def _remove(self, group_id: str, address: str, kind: str, actor: Optional[str] = None) -> Group:
        def transition(group: Group):
            if address not in group.members:
                raise NotMember(f"{address} is not in group {group_id}")
            group.members.remove(address)
            return kind, address

        return self._mutate(group_id, transition, actor)

    def remove_member(self, group_id: str, address: str) -> Group:
        """Member leaves the group."""
        return self._remove(group_id, address, events.USER_LEFT)

    def remove_member_by_admin(self, group_id: str, address: str, actor: Optional[str] = None) -> Group:
        return self._remove(group_id, address, events.USER_REMOVED, actor)

    # --- Admins ---

    def add_admin(self, group_id: str, address: str, actor: Optional[str] = None) -> Group:
        validate_address(address)

        def transition(group: Group):
            if address not in group.admins:
                group.admins.append(address)
            return events.ADMIN_ASSIGNED, address

        return self._mutate(group_id, transition, actor)

    def remove_admin(self, group_id: str, address: str, actor: Optional[str] = None) -> Group:
        def transition(group: Group):
            if address in group.admins:
                group.admins.remove(address)
            return events.ADMIN_REVOKED, address

        return self._mutate(group_id, transition, actor)

    # --- Metadata ---

    def update_name(self, group_id: str, name: str, actor: Optional[str] = None) -> Group:
        def transition(group: Group):
            group.name = name
            return events.GROUP_RENAMED, ""

        return self._mutate(group_id, transition, actor)

    def update_description(self, group_id: str, description: str, actor: Optional[str] = None) -> Group:
        def transition(group: Group):
            group.description = description
            return events.DESCRIPTION_UPDATED, ""

        return self._mutate(group_id, transition, actor)

    def update_display_picture(self, group_id: str, display_picture: str, actor: Optional[str] = None) -> Group:
        def transition(group: Group):
            group.display_picture = display_picture
            return events.DP_UPDATED, ""

        return self._mutate(group_id, transition, actor)
