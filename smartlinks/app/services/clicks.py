from __future__ import annotations

import logging
from typing import Optional

from smartlinks.app.models import DeviceType
from smartlinks.app.store import InMemoryStore

logger = logging.getLogger("smartlinks.clicks")


class ClickRecorder:
    def __init__(self, store: InMemoryStore, *, max_field_length: int = 500) -> None:
        self.store = store
        self.max_field_length = max_field_length

    def record(
        self,
        smart_link_id: str,
        selected_group_handle: Optional[str],
        device_type: DeviceType,
        user_agent: str,
        referrer: str,
    ) -> None:
        """Append a click event and bump the link's click counter.

        Never raises. The counter update is a plain read-then-write, so
        concurrent clicks on the same link can lose increments.
        """
        try:
            self.store.append_click_event(
                smart_link_id=smart_link_id,
                redirected_to_group=selected_group_handle,
                device_type=device_type,
                user_agent=(user_agent or "")[: self.max_field_length],
                referrer=(referrer or "")[: self.max_field_length],
            )
            link = self.store.get_smart_link(smart_link_id)
            self.store.set_total_clicks(smart_link_id, link.total_clicks + 1)
        except Exception:
            logger.exception("click_record_failed smart_link_id=%s", smart_link_id)
