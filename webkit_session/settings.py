"""Per-session configuration record: timeout, custom headers and dialog dispositions."""

from collections.abc import Iterator, Mapping, MutableMapping
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class DialogAction(str, Enum):
	ACCEPT = 'accept'
	DISMISS = 'dismiss'


class HeaderSet(MutableMapping[str, str]):
	"""Case-insensitive header mapping that remembers the most recently written spelling."""

	def __init__(self, headers: Mapping[str, str] | None = None):
		self._items: dict[str, tuple[str, str]] = {}
		if headers:
			self.update(headers)

	def __setitem__(self, name: str, value: str) -> None:
		self._items[name.lower()] = (name, str(value))

	def __getitem__(self, name: str) -> str:
		return self._items[name.lower()][1]

	def __delitem__(self, name: str) -> None:
		del self._items[name.lower()]

	def __iter__(self) -> Iterator[str]:
		return iter([original for original, _ in self._items.values()])

	def __len__(self) -> int:
		return len(self._items)

	def __repr__(self) -> str:
		return f'HeaderSet({dict(self.items())!r})'


class SessionSettings(BaseModel):
	"""Mutable settings owned by one session. ``reset()`` swaps in a fresh default record."""

	model_config = ConfigDict(arbitrary_types_allowed=True, extra='forbid', validate_assignment=True)

	timeout: float = Field(default=0.0, ge=0)
	headers: HeaderSet = Field(default_factory=HeaderSet)
	confirm_action: DialogAction = DialogAction.ACCEPT
	prompt_action: DialogAction = DialogAction.DISMISS
	prompt_input: str | None = None
	logging_enabled: bool = False

	@property
	def request_timeout(self) -> float | None:
		"""Timeout for the next command in seconds; None when disabled (0)."""
		return self.timeout or None
