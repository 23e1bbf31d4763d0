import logging
from pathlib import Path

from fastapi.responses import HTMLResponse

logger = logging.getLogger("uvicorn.error")

PACKAGED_PAGES = Path(__file__).parent / 'static'

PAGE_FOR_STATUS = {
    404: '404.html',
    500: '50x.html',
    502: '50x.html',
    503: '50x.html',
    504: '50x.html',
}


class ErrorPages:
    """
    Static HTML pages for errors the proxy generates itself.

    Pages are read once at startup. A page missing from the configured
    directory falls back to the copy shipped with the package.
    """
    def __init__(self, pages: dict[str, str]):
        self.pages = pages

    @classmethod
    def load(cls, directory: str | None = None) -> "ErrorPages":
        pages = {}
        for filename in set(PAGE_FOR_STATUS.values()):
            source = PACKAGED_PAGES / filename
            if directory:
                candidate = Path(directory) / filename
                if candidate.is_file():
                    source = candidate
                else:
                    logger.warning("Error page %s not found, using packaged page", candidate)
            pages[filename] = source.read_text()
        return cls(pages)

    def response(self, status_code: int) -> HTMLResponse:
        filename = PAGE_FOR_STATUS.get(status_code, '50x.html')
        return HTMLResponse(content=self.pages[filename], status_code=status_code)

    def serve(self, path: str) -> HTMLResponse | None:
        """Serve ``/404.html`` or ``/50x.html`` with status 200, None for any other path."""
        filename = path.lstrip('/')
        if filename not in self.pages:
            return None
        return HTMLResponse(content=self.pages[filename])
