from tierstore.extraction.base import BaseTextExtractor


class PlainTextExtractor(BaseTextExtractor):
    """Decodes text/* documents. Invalid UTF-8 bytes are replaced, never fatal."""

    def extract(self, data: bytes) -> str:
        if data.startswith(b"\xef\xbb\xbf"):
            data = data[3:]
        return data.decode("utf-8", errors="replace").strip()
