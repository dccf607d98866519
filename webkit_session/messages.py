"""Dialog & console sink."""

from typing import Literal

from pydantic import BaseModel, ConfigDict

from webkit_session.events import ConsoleMessageEvent, JavaScriptDialogEvent


class DialogRecord(BaseModel):
	model_config = ConfigDict(extra='forbid', frozen=True)

	kind: Literal['alert', 'confirm', 'prompt']
	message: str
	default_text: str | None = None
	response_text: str | None = None
	accepted: bool = True


class ConsoleRecord(BaseModel):
	model_config = ConfigDict(extra='forbid', frozen=True)

	source: str = ''
	message: str
	line_number: int | None = None
	severity: Literal['info', 'error'] = 'info'

	def __str__(self) -> str:
		if self.source and self.line_number is not None:
			return f'{self.source}:{self.line_number}: {self.message}'
		return self.message


class MessageSink:
	"""Append-only logs of intercepted dialogs and console output, in emission order."""

	def __init__(self) -> None:
		self._dialogs: list[DialogRecord] = []
		self._console: list[ConsoleRecord] = []

	def record_dialog(self, event: JavaScriptDialogEvent) -> DialogRecord:
		record = DialogRecord(
			kind=event.kind,
			message=event.message,
			default_text=event.default_text,
			response_text=event.response_text,
			accepted=event.accepted,
		)
		self._dialogs.append(record)
		return record

	def record_console(self, event: ConsoleMessageEvent) -> ConsoleRecord:
		record = ConsoleRecord(
			source=event.source,
			message=event.message,
			line_number=event.line_number,
			severity=event.severity,
		)
		self._console.append(record)
		return record

	@property
	def dialogs(self) -> list[DialogRecord]:
		return list(self._dialogs)

	def _messages_of(self, kind: str) -> list[str]:
		return [record.message for record in self._dialogs if record.kind == kind]

	@property
	def alert_messages(self) -> list[str]:
		return self._messages_of('alert')

	@property
	def confirm_messages(self) -> list[str]:
		return self._messages_of('confirm')

	@property
	def prompt_messages(self) -> list[str]:
		return self._messages_of('prompt')

	@property
	def console_messages(self) -> list[ConsoleRecord]:
		return list(self._console)

	@property
	def error_messages(self) -> list[ConsoleRecord]:
		return [record for record in self._console if record.severity == 'error']

	def clear(self) -> None:
		self._dialogs.clear()
		self._console.clear()
