"""
Map XML documents onto plain dicts.

- Child elements become keys named by their local name (namespace dropped).
- Names that repeat become a list.
- Attributes become keys prefixed with '@'.
- Text goes under '$' when the element also has children or attributes;
  an element with neither is just its (stripped) text.
"""

import xml.etree.ElementTree as ET
from typing import Any, Union

XmlObject = Union[str, dict[str, Any]]


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def parse_object_from_element(element: ET.Element) -> XmlObject:
    obj: dict[str, Any] = {}
    text = (element.text or "").strip()
    element_count = 0

    for child in element:
        # Comments and processing instructions have non-string tags
        if not isinstance(child.tag, str):
            text += (child.tail or "").strip()
            continue

        element_count += 1
        name = _local_name(child.tag)
        value = parse_object_from_element(child)
        if name in obj:
            if not isinstance(obj[name], list):
                obj[name] = [obj[name]]
            obj[name].append(value)
        else:
            obj[name] = value
        text += (child.tail or "").strip()

    if element_count or element.attrib:
        if text:
            obj["$"] = text
        for attr_name, attr_value in element.attrib.items():
            obj[f"@{_local_name(attr_name)}"] = attr_value
        return obj
    return text


def parse_object_from_xml(xml: Union[str, bytes]) -> XmlObject:
    """
    Parse an XML document into nested dicts, lists and strings.

    Raises:
        xml.etree.ElementTree.ParseError: The document is not well-formed
    """
    root = ET.fromstring(xml)
    return parse_object_from_element(root)
