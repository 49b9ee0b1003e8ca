import json
from pathlib import Path
from typing import Any, Dict

from pydantic import BaseModel


def to_jsonable(data: Any) -> Any:
    """Converts domain records (and containers of them) into plain JSON values."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(data, dict):
        return {key: to_jsonable(value) for key, value in data.items()}
    if isinstance(data, (list, tuple)):
        return [to_jsonable(value) for value in data]
    return data


class FileWriter:
    """
    Writes one run's aggregated result to ``{out_dir}/{filename}`` as pretty JSON.
    The directory is created when missing and the file is replaced on every save.
    """

    def __init__(self, out_dir: str, filename: str):
        self.out_dir = Path(out_dir)
        self.filename = filename

    @property
    def path(self) -> Path:
        return self.out_dir / self.filename

    async def save(self, data: Any) -> Path:
        """
        Serializes data and writes it to disk.

        Args:
            data (Any): Plain JSON values or pydantic records.

        Returns:
            Path: The file that was written.
        """
        self.out_dir.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(to_jsonable(data), indent=2, ensure_ascii=False)
        self.path.write_text(payload, encoding="utf-8")
        return self.path


def load_json(path: Path) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


