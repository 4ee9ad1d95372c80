"""
SQLite store for video metadata and frame records.
"""
import json
import sqlite3
import logging
from pathlib import Path
from contextlib import contextmanager
from typing import Any

from framespeak.models import Description, Frame, VideoInfo

logger = logging.getLogger(__name__)

VIDEOS = "videos"
FRAMES = "frames"

# collection -> index name -> indexed column
INDEXES: dict[str, dict[str, str]] = {
    VIDEOS: {"by-date": "created_at"},
    FRAMES: {"by-video": "video_id"},
}


class FrameStore:
    """Keyed store with two collections: videos and frames (indexed by video)."""

    def __init__(self, db_path: str = "data/framespeak.db"):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self._connection = sqlite3.connect(db_path, check_same_thread=False, timeout=30.0)
        self._connection.row_factory = sqlite3.Row
        self._initialize_database()
        logger.info(f"Frame store opened at: {db_path}")

    @contextmanager
    def get_cursor(self):
        cursor = self._connection.cursor()
        try:
            yield cursor
            self._connection.commit()
        except Exception as e:
            self._connection.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            cursor.close()

    def _initialize_database(self):
        with self.get_cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS videos (
                    key TEXT PRIMARY KEY,
                    created_at REAL NOT NULL DEFAULT 0,
                    value TEXT NOT NULL
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_videos_created_at ON videos(created_at)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS frames (
                    key TEXT PRIMARY KEY,
                    video_id TEXT NOT NULL,
                    image BLOB,
                    value TEXT NOT NULL
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_frames_video_id ON frames(video_id)")

    def close(self):
        self._connection.close()

    def _check_collection(self, collection: str) -> None:
        if collection not in INDEXES:
            raise ValueError(f"Unknown collection: {collection}")

    # Generic keyed access

    def put(self, collection: str, key: str, value: dict[str, Any]) -> None:
        self._check_collection(collection)
        record = dict(value)
        if collection == VIDEOS:
            query = """
                INSERT INTO videos (key, created_at, value) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET created_at = excluded.created_at, value = excluded.value
            """
            params = (key, record.get("created_at", 0), json.dumps(record, ensure_ascii=False))
        else:
            image = record.pop("image", None)
            query = """
                INSERT INTO frames (key, video_id, image, value) VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    video_id = excluded.video_id, image = excluded.image, value = excluded.value
            """
            params = (key, record["video_id"], image, json.dumps(record, ensure_ascii=False))

        with self.get_cursor() as cursor:
            cursor.execute(query, params)

    def _row_to_value(self, row: sqlite3.Row) -> dict[str, Any]:
        value = json.loads(row["value"])
        if "image" in row.keys():
            value["image"] = row["image"]
        return value

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        self._check_collection(collection)
        with self.get_cursor() as cursor:
            cursor.execute(f"SELECT * FROM {collection} WHERE key = ?", (key,))
            row = cursor.fetchone()
        return self._row_to_value(row) if row else None

    def get_all_by_index(self, collection: str, index: str, value: Any = None) -> list[dict[str, Any]]:
        """All records ordered by the index column, optionally equal to value."""
        self._check_collection(collection)
        try:
            column = INDEXES[collection][index]
        except KeyError:
            raise ValueError(f"Unknown index {index} on {collection}")

        query = f"SELECT * FROM {collection}"
        params: tuple = ()
        if value is not None:
            query += f" WHERE {column} = ?"
            params = (value,)
        query += f" ORDER BY {column}, rowid"

        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()
        return [self._row_to_value(row) for row in rows]

    def delete(self, collection: str, key: str) -> None:
        self._check_collection(collection)
        with self.get_cursor() as cursor:
            cursor.execute(f"DELETE FROM {collection} WHERE key = ?", (key,))

    def clear(self, collection: str) -> None:
        self._check_collection(collection)
        with self.get_cursor() as cursor:
            cursor.execute(f"DELETE FROM {collection}")

    # Typed helpers

    def save_video_info(self, video: VideoInfo) -> None:
        self.put(VIDEOS, video.id, video.model_dump())

    def get_video_info(self, video_id: str) -> VideoInfo | None:
        value = self.get(VIDEOS, video_id)
        return VideoInfo(**value) if value else None

    def get_all_videos(self) -> list[VideoInfo]:
        return [VideoInfo(**value) for value in self.get_all_by_index(VIDEOS, "by-date")]

    def delete_video(self, video_id: str) -> None:
        """Delete a video and every frame stored for it."""
        self.delete(VIDEOS, video_id)
        frames = self.get_all_by_index(FRAMES, "by-video", video_id)
        for frame in frames:
            self.delete(FRAMES, frame["id"])
        logger.info(f"Deleted video {video_id} and {len(frames)} frames")

    def save_frame(self, frame: Frame, video_id: str) -> None:
        record = frame.model_dump(exclude={"analyzing"})
        record["video_id"] = video_id
        self.put(FRAMES, frame.id, record)

    def _to_frame(self, value: dict[str, Any]) -> Frame:
        value.pop("video_id", None)
        return Frame(**value)

    def get_frame(self, frame_id: str) -> Frame | None:
        value = self.get(FRAMES, frame_id)
        return self._to_frame(value) if value else None

    def get_video_frames(self, video_id: str) -> list[Frame]:
        return [self._to_frame(value) for value in self.get_all_by_index(FRAMES, "by-video", video_id)]

    def update_frame_description(self, frame_id: str, description: Description) -> None:
        value = self.get(FRAMES, frame_id)
        if value is None:
            return
        value["description"] = description.model_dump()
        self.put(FRAMES, frame_id, value)

    def clear_all(self) -> None:
        self.clear(VIDEOS)
        self.clear(FRAMES)
