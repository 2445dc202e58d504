"""Fixed daily heating schedule lookup."""

from .settings import ScheduleSegment


class HeatingSchedule:
    """Ordered, contiguous schedule segments covering hours 0-23."""

    def __init__(self, segments: list[ScheduleSegment]):
        self.segments = list(segments)

    def index_for(self, hour: int) -> int:
        """Index of the first segment containing the hour, -1 if none."""
        return next(
            (i for i, segment in enumerate(self.segments) if segment.contains(hour)),
            -1,
        )

    def to_list(self) -> list[dict]:
        return [segment.to_dict() for segment in self.segments]

    def __len__(self) -> int:
        return len(self.segments)
