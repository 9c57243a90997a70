from mathboard.core.event.bus import EventBus, EventPayload, ListenerPriority

__all__ = ["EventBus", "EventPayload", "ListenerPriority"]
