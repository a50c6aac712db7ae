"""
Interdex Document Codec
=======================
YAML documents with one custom scalar: ContentLocator.

Encoding:
    locator: !ContentLocator CHK@yeah

Each DocumentCodec owns its own loader/dumper subclasses, so registering
the tag does not touch PyYAML's global SafeLoader/SafeDumper, and a codec
instance can be shared between threads (PyYAML builds a fresh loader or
dumper object per call).

Decoding failures, including a tagged scalar that is not a valid locator,
raise DataFormatError. A document that is empty or not a mapping is also
a DataFormatError.
"""

import io
from typing import IO, Any, Dict, Union

import yaml
from yaml.constructor import ConstructorError

from indexing.entry import ContentLocator
from storage.tasks import DataFormatError

LOCATOR_TAG = "!ContentLocator"

# libyaml-backed classes when PyYAML was built with them
_BaseLoader = getattr(yaml, "CSafeLoader", yaml.SafeLoader)
_BaseDumper = getattr(yaml, "CSafeDumper", yaml.SafeDumper)


def _represent_locator(dumper: yaml.SafeDumper, data: ContentLocator) -> yaml.ScalarNode:
    return dumper.represent_scalar(LOCATOR_TAG, str(data))


def _construct_locator(loader: yaml.SafeLoader, node: yaml.Node) -> ContentLocator:
    value = loader.construct_scalar(node)
    try:
        return ContentLocator(value)
    except ValueError:
        raise ConstructorError(
            "while constructing a content locator", node.start_mark,
            f"found malformed locator {value!r}", node.start_mark) from None


class DocumentCodec:
    """Converts between Dict[str, Any] documents and YAML text."""

    def __init__(self):
        self._loader = type("LocatorLoader", (_BaseLoader,), {})
        self._dumper = type("LocatorDumper", (_BaseDumper,), {})
        self._loader.add_constructor(LOCATOR_TAG, _construct_locator)
        self._dumper.add_representer(ContentLocator, _represent_locator)

    def dump(self, document: Dict[str, Any], stream: IO[str], source: Any = None) -> None:
        if not isinstance(document, dict):
            raise DataFormatError(
                f"Payload must be a mapping, got {type(document).__name__}", source)
        try:
            yaml.dump(document, stream, Dumper=self._dumper,
                      default_flow_style=None, sort_keys=False, allow_unicode=True)
        except yaml.YAMLError as e:
            raise DataFormatError(f"YAML could not represent the payload: {e}", source) from e

    def load(self, stream: Union[IO[str], IO[bytes]], source: Any = None) -> Dict[str, Any]:
        try:
            document = yaml.load(stream, Loader=self._loader)
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise DataFormatError(f"YAML could not process the document {source}: {e}", source) from e
        if not isinstance(document, dict):
            raise DataFormatError(
                f"Document {source} is not a mapping (got {type(document).__name__})", source)
        return document

    def dumps(self, document: Dict[str, Any]) -> str:
        buf = io.StringIO()
        self.dump(document, buf)
        return buf.getvalue()

    def loads(self, text: str) -> Dict[str, Any]:
        return self.load(text)
