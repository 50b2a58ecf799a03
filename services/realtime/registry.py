from typing import Dict, Hashable, List


class SubscriptionRegistry:
    """
    Topic -> ordered client-id list.

    Subscriber lists are created lazily and never removed, so an emptied topic
    stays registered. A client id appears at most once per topic.
    """

    def __init__(self) -> None:
        self._topics: Dict[Hashable, List[str]] = {}

    def subscribe(self, topic: Hashable, client_id: str) -> None:
        subscribers = self._topics.setdefault(topic, [])
        if client_id not in subscribers:
            subscribers.append(client_id)

    def unsubscribe(self, topic: Hashable, client_id: str) -> None:
        subscribers = self._topics.get(topic)
        if subscribers and client_id in subscribers:
            subscribers.remove(client_id)

    def subscribers_of(self, topic: Hashable) -> List[str]:
        return list(self._topics.get(topic, ()))

    def topics(self) -> List[Hashable]:
        return list(self._topics)

    def remove_client(self, client_id: str) -> List[Hashable]:
        """Drop a client from every topic; returns the topics it was removed from."""
        removed = []
        for topic, subscribers in self._topics.items():
            if client_id in subscribers:
                subscribers.remove(client_id)
                removed.append(topic)
        return removed
