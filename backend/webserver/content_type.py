"""Content-Type MIME of the most common data formats."""

MIME_HTML = "text/html"
MIME_JSON = "application/json"
MIME_MSGPACK = "application/x-msgpack"
MIME_MSGPACK2 = "application/msgpack"
MIME_MULTIPART_POST_FORM = "multipart/form-data"
MIME_PLAIN = "text/plain"
MIME_POST_FORM = "application/x-www-form-urlencoded"
MIME_PROTOBUF = "application/x-protobuf"
MIME_XML = "application/xml"
MIME_XML2 = "text/xml"
MIME_YAML = "application/x-yaml"

CHARSET_UTF8 = "utf-8"
