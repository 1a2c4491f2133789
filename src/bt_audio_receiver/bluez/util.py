"""Small helpers shared by the BlueZ wrappers."""

import logging

from dbus_next import Message
from dbus_next.aio import MessageBus

from .constants import BLUEZ_SERVICE, OBJECT_MANAGER_INTERFACE

logger = logging.getLogger(__name__)


def unwrap(value):
    """Return the plain value of a Variant (or the value itself)."""
    return value.value if hasattr(value, "value") else value


def unwrap_props(props: dict) -> dict:
    return {k: unwrap(v) for k, v in props.items()}


def _match_message(member: str, rule: str) -> Message:
    return Message(
        destination="org.freedesktop.DBus",
        path="/org/freedesktop/DBus",
        interface="org.freedesktop.DBus",
        member=member,
        signature="s",
        body=[rule],
    )


async def add_match(bus: MessageBus, rule: str) -> None:
    """Ask the bus daemon to route signals matching ``rule`` to us."""
    await bus.call(_match_message("AddMatch", rule))


def remove_match_nowait(bus: MessageBus, rule: str) -> None:
    """Drop a match rule without waiting for the reply."""
    try:
        bus.send(_match_message("RemoveMatch", rule))
    except Exception as e:
        logger.debug("RemoveMatch %s failed: %s", rule, e)


async def get_managed_objects(bus: MessageBus) -> dict:
    """Return BlueZ's ObjectManager view: {path: {interface: {prop: Variant}}}."""
    introspection = await bus.introspect(BLUEZ_SERVICE, "/")
    proxy = bus.get_proxy_object(BLUEZ_SERVICE, "/", introspection)
    obj_manager = proxy.get_interface(OBJECT_MANAGER_INTERFACE)
    return await obj_manager.call_get_managed_objects()
