from collections.abc import Iterable, Sequence
from urllib.parse import quote, urlsplit

from .config import Route

# Never forwarded in either direction (RFC 7230 section 6.1), plus the inbound
# Host, which each route replaces with its own.
HOP_BY_HOP_HEADERS = {
    'connection',
    'keep-alive',
    'proxy-authenticate',
    'proxy-authorization',
    'te',
    'trailers',
    'transfer-encoding',
    'upgrade',
    'host',
}

# Characters left as is when re-encoding a decoded path
PATH_SAFE = "/:@!$&'()*+,;=-._~"

# Set by the proxy itself, so client supplied values are dropped
PROXY_SET_HEADERS = {'x-real-ip', 'x-forwarded-for', 'x-forwarded-proto'}


def matches(route: Route, path: str) -> bool:
    if route.match == 'exact':
        return path == route.path_pattern
    return path.startswith(route.path_pattern)


def find_route(path: str, routes: Sequence[Route]) -> Route | None:
    """Top-down, first match wins."""
    for route in routes:
        if matches(route, path):
            return route
    return None


def upstream_path(route: Route, path: str) -> str:
    """
    Path sent to the upstream for ``path``.

    A matching rewrite rule decides the path on its own. Otherwise an upstream
    URL with a path replaces the matched part of the request path; without one
    the request path goes through untouched. The result is never matched
    against the route table again.
    """
    if route.rewrite is not None:
        rewritten, count = route.rewrite.regex.subn(route.rewrite.replacement, path, count=1)
        if count:
            return rewritten if rewritten.startswith('/') else '/' + rewritten

    base = route.upstream_path
    if not base:
        return path
    if route.match == 'exact':
        return base
    return base + path[len(route.path_pattern):]


def upstream_url(route: Route, path: str) -> str:
    """Upstream URL for the decoded request ``path``, re-encoded for the wire."""
    return route.upstream_origin + quote(upstream_path(route, path), safe=PATH_SAFE)


def forwarded_headers(
    route: Route,
    headers: Iterable[tuple[str, str]],
    client_ip: str | None,
    scheme: str,
) -> list[tuple[str, str]]:
    """
    Build the outbound header list.

    Hop-by-hop headers and the inbound Host are dropped, the route's Host is
    set, and the client address is appended to any existing X-Forwarded-For
    chain.
    """
    outbound = []
    chain = []
    for name, value in headers:
        lowered = name.lower()
        if lowered == 'x-forwarded-for':
            chain.append(value)
        if lowered in HOP_BY_HOP_HEADERS or lowered in PROXY_SET_HEADERS:
            continue
        outbound.append((name, value))

    if client_ip:
        chain.append(client_ip)

    outbound.append(('host', route.upstream_host_header))
    if client_ip:
        outbound.append(('x-real-ip', client_ip))
    if chain:
        outbound.append(('x-forwarded-for', ', '.join(chain)))
    outbound.append(('x-forwarded-proto', scheme))
    return outbound


def rewrite_location(route: Route, location: str) -> str:
    """
    Map an upstream redirect target back into the public path space.

    A relative target is compared against the path part of an absolute
    upstream prefix, so ``/career/foo`` and ``https://jobs.bimeco.io/career/foo``
    both come back as ``/jobs/foo``.
    """
    rule = route.redirect
    if rule is None or not location:
        return location

    if location.startswith(rule.upstream_prefix):
        return rule.public_prefix + location[len(rule.upstream_prefix):]

    prefix = urlsplit(rule.upstream_prefix)
    if location.startswith('/') and not location.startswith('//') and prefix.netloc:
        prefix_path = prefix.path or '/'
        if location.startswith(prefix_path):
            return rule.public_prefix + location[len(prefix_path):]

    return location


def rewrite_refresh(route: Route, refresh: str) -> str:
    # "5; url=https://host/path"
    delay, sep, target = refresh.partition(';')
    if not sep:
        return refresh
    key, eq, url = target.strip().partition('=')
    if not eq or key.strip().lower() != 'url':
        return refresh
    return f'{delay}; {key.strip()}={rewrite_location(route, url.strip())}'


def response_headers(
    route: Route,
    headers: Iterable[tuple[str, str]],
) -> list[tuple[str, str]]:
    # content-length is recomputed for the decoded body
    filtered = []
    for name, value in headers:
        lowered = name.lower()
        if lowered in {'content-encoding', 'content-length', 'transfer-encoding', 'connection'}:
            continue
        if lowered == 'location':
            value = rewrite_location(route, value)
        elif lowered == 'refresh':
            value = rewrite_refresh(route, value)
        filtered.append((name, value))
    return filtered
