"""Cookie parsing and the read-only cookie jar returned by WebkitSession.cookies()."""

from collections.abc import Iterator

from pydantic import BaseModel, ConfigDict


class Cookie(BaseModel):
	"""One cookie as reported by the engine (``name=value; domain=...; path=...``)."""

	model_config = ConfigDict(extra='forbid', frozen=True)

	name: str
	value: str = ''
	domain: str = ''
	path: str = '/'
	expires: str | None = None
	secure: bool = False
	http_only: bool = False

	@classmethod
	def parse(cls, raw: str) -> 'Cookie':
		parts = [part.strip() for part in raw.split(';') if part.strip()]
		if not parts or '=' not in parts[0]:
			raise ValueError(f'Malformed cookie string: {raw!r}')

		name, value = parts[0].split('=', 1)
		fields: dict[str, object] = {'name': name.strip(), 'value': value.strip()}
		for attribute in parts[1:]:
			key, _, attr_value = attribute.partition('=')
			key = key.strip().lower()
			if key == 'domain':
				fields['domain'] = attr_value.strip()
			elif key == 'path':
				fields['path'] = attr_value.strip() or '/'
			elif key == 'expires':
				fields['expires'] = attr_value.strip()
			elif key == 'secure':
				fields['secure'] = True
			elif key == 'httponly':
				fields['http_only'] = True
		return cls.model_validate(fields)

	@property
	def key(self) -> tuple[str, str, str]:
		return (self.name, self.domain.lstrip('.'), self.path)

	def to_header(self) -> str:
		"""Render back to the ``name=value; domain=...`` form accepted by SetCookie."""
		parts = [f'{self.name}={self.value}']
		if self.domain:
			parts.append(f'domain={self.domain}')
		parts.append(f'path={self.path}')
		if self.expires:
			parts.append(f'expires={self.expires}')
		if self.secure:
			parts.append('Secure')
		if self.http_only:
			parts.append('HttpOnly')
		return '; '.join(parts)


class CookieJar:
	"""Snapshot of the engine's cookies keyed by (name, domain, path); last write wins.

	``jar['session_id']`` looks a cookie up by name alone and returns its value.
	"""

	def __init__(self, cookies: list[Cookie] | None = None):
		self._cookies: dict[tuple[str, str, str], Cookie] = {}
		for cookie in cookies or []:
			self.add(cookie)

	@classmethod
	def from_strings(cls, raw_cookies: list[str]) -> 'CookieJar':
		return cls([Cookie.parse(raw) for raw in raw_cookies if raw.strip()])

	def add(self, cookie: Cookie) -> None:
		self._cookies.pop(cookie.key, None)
		self._cookies[cookie.key] = cookie

	def find(self, name: str) -> Cookie | None:
		# Most recently written match wins when several domains share a name.
		for cookie in reversed(list(self._cookies.values())):
			if cookie.name == name:
				return cookie
		return None

	def get(self, name: str, default: str | None = None) -> str | None:
		cookie = self.find(name)
		return cookie.value if cookie else default

	def __getitem__(self, name: str) -> str:
		cookie = self.find(name)
		if cookie is None:
			raise KeyError(name)
		return cookie.value

	def __contains__(self, name: object) -> bool:
		return isinstance(name, str) and self.find(name) is not None

	def __iter__(self) -> Iterator[Cookie]:
		return iter(list(self._cookies.values()))

	def __len__(self) -> int:
		return len(self._cookies)
