import re
from os import getenv
from pathlib import Path
from typing import Literal
from urllib.parse import unquote, urlsplit

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

# \1 or \g<name> / \g<1> in a re.sub replacement
GROUP_REF = re.compile(r"\\(\d+)|\\g<([^>]*)>")


class ConfigError(Exception):
    """Raised when the proxy configuration cannot be loaded or is invalid."""


class Timeouts(BaseModel):
    connect: float = Field(default=60.0, gt=0)
    read: float = Field(default=60.0, gt=0)
    write: float = Field(default=60.0, gt=0)

    def as_httpx(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.connect,
            read=self.read,
            write=self.write,
            pool=self.connect,
        )


class RewriteRule(BaseModel):
    """
    Regex substitution applied to the request path before forwarding.

    ``replacement`` uses ``re.sub`` syntax (``\\1``, ``\\g<name>``). Groups that
    did not participate in the match expand to an empty string.
    """
    pattern: str
    replacement: str

    @model_validator(mode="after")
    def check_pattern(self) -> "RewriteRule":
        try:
            compiled = re.compile(self.pattern)
        except re.error as exc:
            raise ValueError(f"invalid rewrite pattern {self.pattern!r}: {exc}") from exc

        for number, name in GROUP_REF.findall(self.replacement):
            ref = number or name
            if ref.isdigit():
                if int(ref) > compiled.groups:
                    raise ValueError(
                        f"replacement {self.replacement!r} references group {ref}, "
                        f"pattern has {compiled.groups}"
                    )
            elif ref not in compiled.groupindex:
                raise ValueError(
                    f"replacement {self.replacement!r} references unknown group {ref!r}"
                )
        return self

    @property
    def regex(self) -> re.Pattern:
        # re caches compiled patterns
        return re.compile(self.pattern)


class RedirectRule(BaseModel):
    """Maps upstream redirect targets back to the public path space."""
    upstream_prefix: str
    public_prefix: str


class Route(BaseModel):
    path_pattern: str
    match: Literal["prefix", "exact"] = "prefix"
    upstream: str
    name: str | None = None
    host_header: str | None = None
    rewrite: RewriteRule | None = None
    redirect: RedirectRule | None = None
    timeouts: Timeouts = Field(default_factory=Timeouts)

    @field_validator("path_pattern")
    @classmethod
    def check_path_pattern(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"path pattern must start with '/': {value!r}")
        return value

    @field_validator("upstream")
    @classmethod
    def check_upstream(cls, value: str) -> str:
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL as exc:
            raise ValueError(f"invalid upstream URL {value!r}: {exc}") from exc
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"upstream must be an absolute http(s) URL: {value!r}")
        if url.query or url.fragment:
            raise ValueError(f"upstream must not carry a query or fragment: {value!r}")
        if url.userinfo:
            raise ValueError(f"upstream must not carry credentials: {value!r}")
        return value

    @property
    def label(self) -> str:
        return self.name or self.path_pattern

    @property
    def upstream_origin(self) -> str:
        parts = urlsplit(self.upstream)
        return f"{parts.scheme}://{parts.netloc}"

    @property
    def upstream_path(self) -> str:
        """Path component of the upstream URL, '' when there is none."""
        return unquote(urlsplit(self.upstream).path)

    @property
    def upstream_host_header(self) -> str:
        return self.host_header or urlsplit(self.upstream).netloc

    @property
    def is_catch_all(self) -> bool:
        return self.match == "prefix" and self.path_pattern == "/"

    def covers(self, other: "Route") -> bool:
        """True when every path matched by ``other`` is already matched by this route."""
        if self.match == "exact":
            return other.match == "exact" and other.path_pattern == self.path_pattern
        return other.path_pattern.startswith(self.path_pattern)


class Settings(BaseModel):
    routes: list[Route] = Field(default_factory=list)
    allowed_hosts: list[str] = Field(default_factory=list)
    forbidden_body: str = "Forbidden"
    error_pages_dir: str | None = None
    local_pages: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_route_order(self) -> "Settings":
        for index, route in enumerate(self.routes):
            for earlier in self.routes[:index]:
                if earlier.covers(route):
                    raise ValueError(
                        f"route {route.label!r} is unreachable: "
                        f"shadowed by earlier route {earlier.label!r}"
                    )
        return self

    @property
    def catch_all(self) -> Route | None:
        for route in self.routes:
            if route.is_catch_all:
                return route
        return None


def default_settings() -> Settings:
    return Settings(
        routes=[
            Route(
                name="next-static",
                path_pattern="/_next/",
                upstream="https://jobs.bimeco.io/_next/",
            ),
            Route(
                name="jobs",
                path_pattern="/jobs",
                upstream="https://jobs.bimeco.io",
                rewrite=RewriteRule(pattern=r"^/jobs(/.*)?$", replacement=r"/career\1"),
                redirect=RedirectRule(
                    upstream_prefix="https://jobs.bimeco.io/career/",
                    public_prefix="/jobs/",
                ),
                timeouts=Timeouts(connect=60.0, read=60.0),
            ),
            Route(
                name="site",
                path_pattern="/",
                upstream="https://www.bim.com.sg",
            ),
        ],
        allowed_hosts=["www.bim.com.sg"],
        local_pages=["/50x.html"],
    )


def load_settings(path: str | None = None) -> Settings:
    """
    Load settings from a JSON file.

    The file is taken from ``path`` or the ``PROXY_CONFIG`` environment
    variable; without either the built-in route table is used.
    :raises ConfigError: the file is unreadable or fails validation
    """
    path = path or getenv("PROXY_CONFIG")
    if not path:
        return default_settings()

    try:
        raw = Path(path).read_text()
    except OSError as exc:
        raise ConfigError(f"cannot read proxy config {path}: {exc}") from exc

    try:
        return Settings.model_validate_json(raw)
    except ValidationError as exc:
        raise ConfigError(f"invalid proxy config {path}:\n{exc}") from exc
