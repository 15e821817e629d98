"""Core pipeline for html2anchors."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Union

LOG = logging.getLogger("html2anchors")

EXIT_INVALID_ARGS = 6
EXIT_OUTPUT_PATH = 7

LANG_ENV = "HTML2ANCHORS_LANG"
DEFAULT_LANG = "en"

BACK_TO_TOC_KEY = "anchorLinks.backToToc"
DEFAULT_LINK_TEXT = "↑ Back to TOC"

DEFAULT_ANCHOR_DEPTH = 3
ANCHOR_DEPTH_CHOICES = ("none", 2, 3, 4, 5, 6)
ALIGNMENT_CHOICES = ("left", "center", "right")

DEFAULT_CSS_CLASSES = {
    "container": "anchor-link-container",
    "link": "anchor-link",
    "text": "anchor-link-text",
}

MESSAGE_CATALOG: Dict[str, Dict[str, str]] = {
    "en": {BACK_TO_TOC_KEY: DEFAULT_LINK_TEXT},
    "zh-TW": {BACK_TO_TOC_KEY: "↑ 返回目錄"},
}

AnchorDepth = Union[str, int]


@dataclass(frozen=True)
class Heading:
    level: int
    text: str
    id: str
    anchor: str


@dataclass
class AnchorLinksOptions:
    enabled: bool
    anchor_depth: Optional[AnchorDepth] = DEFAULT_ANCHOR_DEPTH
    link_text: Optional[str] = None
    css_classes: Optional[Dict[str, str]] = None
    alignment: Optional[str] = None

    def __post_init__(self) -> None:
        self.anchor_depth = normalize_anchor_depth(self.anchor_depth)
        if self.alignment is not None and self.alignment not in ALIGNMENT_CHOICES:
            raise ValueError(
                f"Invalid alignment {self.alignment!r}: expected one of {', '.join(ALIGNMENT_CHOICES)}"
            )
        if self.css_classes is not None:
            unknown = sorted(set(self.css_classes) - set(DEFAULT_CSS_CLASSES))
            if unknown:
                raise ValueError(f"Unknown CSS class keys: {', '.join(unknown)}")


@dataclass
class ProcessedSection:
    title: str
    level: int
    anchor: str
    has_anchor_link: bool


@dataclass
class AnchorLinksGenerationResult:
    modified_html: str
    links_inserted: int
    processed_sections: List[ProcessedSection] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "links_inserted": self.links_inserted,
            "processed_sections": [asdict(section) for section in self.processed_sections],
        }


@dataclass(frozen=True)
class AnchorLinkTemplate:
    template: str
    styles: str


def normalize_anchor_depth(value: Any) -> AnchorDepth:
    if value is None or value == "":
        return DEFAULT_ANCHOR_DEPTH
    if isinstance(value, str):
        cleaned = value.strip().lower()
        if cleaned == "none":
            return "none"
        if cleaned.isdigit():
            value = int(cleaned)
    if isinstance(value, int) and not isinstance(value, bool) and value in ANCHOR_DEPTH_CHOICES:
        return value
    raise ValueError(f"Invalid anchor depth {value!r}: expected 'none' or an integer between 2 and 6")


class Translator(Protocol):
    def translate(self, key: str) -> str:
        ...


class CatalogTranslator:
    """Looks up messages in the built-in catalog, falling back to English."""

    def __init__(self, lang: Optional[str] = None):
        requested = (lang or DEFAULT_LANG).strip()
        if requested not in MESSAGE_CATALOG:
            LOG.debug("Unknown language %r, falling back to %s", requested, DEFAULT_LANG)
            requested = DEFAULT_LANG
        self.lang = requested

    def translate(self, key: str) -> str:
        messages = MESSAGE_CATALOG.get(self.lang, {})
        if key in messages:
            return messages[key]
        return MESSAGE_CATALOG[DEFAULT_LANG].get(key, key)


def resolve_language(lang: Optional[str] = None) -> str:
    if lang and lang.strip():
        return lang.strip()
    env_lang = os.environ.get(LANG_ENV)
    if env_lang is not None and env_lang.strip():
        return env_lang.strip()
    return DEFAULT_LANG


def _resolve_log_level(verbose: bool, debug: bool) -> int:
    return logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)


def _configure_html2anchors_logger(level: int) -> None:
    LOG.setLevel(level)
    LOG.propagate = False
    if not LOG.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        handler.setLevel(level)
        LOG.addHandler(handler)
    else:
        for handler in LOG.handlers:
            handler.setLevel(level)
            if handler.formatter is None:
                handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))


def setup_logging(verbose: bool, debug: bool) -> None:
    level = _resolve_log_level(verbose, debug)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    _configure_html2anchors_logger(level)


def effective_depth(anchor_depth: AnchorDepth) -> int:
    return anchor_depth if isinstance(anchor_depth, int) else DEFAULT_ANCHOR_DEPTH


def filter_headings_by_depth(headings: List[Heading], anchor_depth: AnchorDepth) -> List[Heading]:
    depth = effective_depth(anchor_depth)
    return [heading for heading in headings if heading.level <= depth]


def next_is_first_subsection(current: Heading, next_heading: Optional[Heading]) -> bool:
    return next_heading is not None and next_heading.level > current.level


def build_anchor_link_template(
    *,
    css_classes: Dict[str, str],
    alignment: str,
    link_text: str,
    has_toc: bool = False,
) -> AnchorLinkTemplate:
    align_class = f"anchor-link-{alignment}"
    link_target = "#toc" if has_toc else "#top"
    container = css_classes["container"]
    link = css_classes["link"]
    text = css_classes["text"]

    template = (
        f'<div class="{container} {align_class}">\n'
        f'  <a href="{link_target}" class="{link}">\n'
        f'    <span class="{text}">{link_text}</span>\n'
        "  </a>\n"
        "</div>"
    )

    styles = f"""
.{container} {{
  margin: 1rem 0;
  padding: 0.5rem 0;
}}

.anchor-link-right {{
  text-align: right;
}}

.anchor-link-center {{
  text-align: center;
}}

.anchor-link-left {{
  text-align: left;
}}

.{link} {{
  color: #666;
  text-decoration: none;
  font-size: 0.85em;
  padding: 0.25rem 0.5rem;
  border-radius: 3px;
  transition: all 0.2s ease;
}}

.{link}:hover {{
  color: #333;
  background-color: #f5f5f5;
  text-decoration: none;
}}
"""
    return AnchorLinkTemplate(template=template, styles=styles)


# A finder returns (offset, tag_length) of its last match in the region, or None.
BoundaryFinder = Callable[[str], Optional[Tuple[int, int]]]

ADMONITION_RE = re.compile(r'<div class="admonition[^"]*"[^>]*>.*?</div>', re.DOTALL)
DIAGRAM_RE = re.compile(r'<div class="(?:mermaid-diagram|plantuml-diagram)"[^>]*>.*?</div>', re.DOTALL)


def _last_closing_tag(*tags: str) -> BoundaryFinder:
    def finder(content: str) -> Optional[Tuple[int, int]]:
        best: Optional[Tuple[int, int]] = None
        for tag in tags:
            pos = content.rfind(tag)
            if pos > -1 and (best is None or pos > best[0]):
                best = (pos, len(tag))
        return best

    return finder


def _last_container_end(pattern: re.Pattern) -> BoundaryFinder:
    def finder(content: str) -> Optional[Tuple[int, int]]:
        last = None
        for match in pattern.finditer(content):
            last = match
        if last is None:
            return None
        return last.end() - len("</div>"), len("</div>")

    return finder


STRUCTURAL_BOUNDARY_FINDERS: List[Tuple[str, BoundaryFinder]] = [
    ("paragraph", _last_closing_tag("</p>")),
    ("table", _last_closing_tag("</table>")),
    ("pre", _last_closing_tag("</pre>")),
    ("blockquote", _last_closing_tag("</blockquote>")),
    ("list", _last_closing_tag("</ul>", "</ol>")),
    ("admonition", _last_container_end(ADMONITION_RE)),
    ("diagram", _last_container_end(DIAGRAM_RE)),
    ("div", _last_closing_tag("</div>")),
]


def find_last_structural_boundary(
    content: str, finders: Optional[List[Tuple[str, BoundaryFinder]]] = None
) -> Optional[int]:
    """Return the offset just past the latest structural closing tag in ``content``.

    Every finder is asked for its last match and the one occurring latest wins,
    so a list nested in a blockquote resolves to the blockquote end.
    """
    best: Optional[Tuple[int, int]] = None
    for _, finder in finders if finders is not None else STRUCTURAL_BOUNDARY_FINDERS:
        found = finder(content)
        if found is None:
            continue
        if best is None or found[0] > best[0]:
            best = found
    if best is None:
        return None
    return best[0] + best[1]


def clean_anchor(anchor: Optional[str]) -> str:
    anchor = (anchor or "").strip()
    return anchor[1:] if anchor.startswith("#") else anchor


def _heading_tag_pattern(heading: Heading, *, full: bool) -> Optional[re.Pattern]:
    anchor_id = clean_anchor(heading.anchor)
    if not anchor_id:
        return None
    level = int(heading.level)
    opening = rf'<h{level}[^>]*id="{re.escape(anchor_id)}"[^>]*>'
    if full:
        return re.compile(rf"{opening}.*?</h{level}>", re.IGNORECASE | re.DOTALL)
    return re.compile(opening, re.IGNORECASE)


def locate_insertion_point(
    html: str,
    current: Heading,
    next_heading: Optional[Heading],
    finders: Optional[List[Tuple[str, BoundaryFinder]]] = None,
) -> Optional[int]:
    """Resolve where the link closing ``current``'s section goes in ``html``.

    Returns None when the current heading tag cannot be found.
    """
    current_pattern = _heading_tag_pattern(current, full=True)
    if current_pattern is None:
        LOG.debug("Heading %r has no anchor", current.text)
        return None
    current_match = current_pattern.search(html)
    if current_match is None:
        LOG.debug("Heading tag not found for %r (anchor=%r)", current.text, current.anchor)
        return None

    if next_heading is None:
        return len(html)

    next_pattern = _heading_tag_pattern(next_heading, full=False)
    next_match = next_pattern.search(html) if next_pattern is not None else None
    if next_match is None:
        return current_match.end()

    region_start = current_match.end()
    between = html[region_start:next_match.start()]
    boundary = find_last_structural_boundary(between, finders)
    if boundary is None:
        return next_match.start()
    return region_start + boundary


class AnchorLinksGenerator:
    """Inserts back-to-TOC links at the end of every section within the anchor depth."""

    def __init__(self, options: AnchorLinksOptions, translator: Optional[Translator] = None):
        self.translator = translator
        self.enabled = bool(options.enabled)
        self.anchor_depth = normalize_anchor_depth(options.anchor_depth)
        self.link_text = options.link_text or self._default_link_text()
        self.css_classes = {**DEFAULT_CSS_CLASSES, **(options.css_classes or {})}
        self.alignment = options.alignment or "right"

    def _default_link_text(self) -> str:
        if self.translator is not None:
            return self.translator.translate(BACK_TO_TOC_KEY)
        return DEFAULT_LINK_TEXT

    @property
    def insertion_enabled(self) -> bool:
        return self.anchor_depth != "none"

    def create_template(self, has_toc: bool = False) -> AnchorLinkTemplate:
        return build_anchor_link_template(
            css_classes=self.css_classes,
            alignment=self.alignment,
            link_text=self.link_text,
            has_toc=has_toc,
        )

    def get_styles(self) -> str:
        return self.create_template().styles

    def insert_anchor_links(
        self, html_content: str, headings: List[Heading], has_toc: bool = False
    ) -> AnchorLinksGenerationResult:
        if not self.enabled or not headings:
            return AnchorLinksGenerationResult(modified_html=html_content, links_inserted=0)

        target_headings = filter_headings_by_depth(headings, self.anchor_depth)
        if not target_headings:
            return AnchorLinksGenerationResult(modified_html=html_content, links_inserted=0)

        link_html = f"\n{self.create_template(has_toc).template}\n"
        modified_html = html_content
        links_inserted = 0
        processed: List[ProcessedSection] = []

        for index, heading in enumerate(target_headings):
            next_heading = target_headings[index + 1] if index + 1 < len(target_headings) else None
            inserted = False
            try:
                # Offsets shift after each splice, so always resolve against the current document.
                modified_html, inserted = self._insert_for_section(modified_html, heading, next_heading, link_html)
            except Exception as exc:
                LOG.warning("Failed to insert anchor link for section %r: %s", heading.text, exc)
                inserted = False
            if inserted:
                links_inserted += 1
            processed.append(
                ProcessedSection(
                    title=heading.text,
                    level=heading.level,
                    anchor=heading.anchor,
                    has_anchor_link=inserted,
                )
            )

        return AnchorLinksGenerationResult(
            modified_html=modified_html,
            links_inserted=links_inserted,
            processed_sections=processed,
        )

    def _insert_for_section(
        self, html: str, heading: Heading, next_heading: Optional[Heading], link_html: str
    ) -> Tuple[str, bool]:
        insertion_point = locate_insertion_point(html, heading, next_heading)
        if insertion_point is None:
            LOG.warning("Heading %r not found in HTML; no anchor link inserted", heading.text)
            return html, False
        if next_is_first_subsection(heading, next_heading):
            LOG.warning("No anchor link for %r: followed by its first sub-section", heading.text)
            return html, False
        if not self.insertion_enabled:
            return html, False
        LOG.debug("Inserting anchor link for %r at offset %d", heading.text, insertion_point)
        return html[:insertion_point] + link_html + html[insertion_point:], True


def _load_soup(html: str):
    try:
        from bs4 import BeautifulSoup  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"beautifulsoup4 not available: {exc}") from exc
    return BeautifulSoup(html, "html.parser")


def extract_headings(html: str) -> List[Heading]:
    soup = _load_soup(html)
    headings: List[Heading] = []
    for tag in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
        heading_id = (tag.get("id") or "").strip()
        text = tag.get_text(" ", strip=True)
        if not heading_id:
            LOG.debug("Skipping heading without id: %r", text)
            continue
        headings.append(Heading(level=int(tag.name[1]), text=text, id=heading_id, anchor=f"#{heading_id}"))
    return headings


def parse_toc_headings(toc_path: Path) -> List[Heading]:
    try:
        raw = toc_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RuntimeError(f"Unable to read TOC file {toc_path}: {exc}") from exc

    soup = _load_soup(raw)
    root_ul = soup.find("ul")
    headings: List[Heading] = []

    def walk_list(ul, level: int) -> None:
        for li in ul.find_all("li", recursive=False):
            link = li.find("a", recursive=False)
            if link is not None:
                href = link.get("href") or ""
                anchor_id = href.split("#", 1)[1].strip() if "#" in href else ""
                title = link.get_text(" ", strip=True)
                if anchor_id and title and level <= 6:
                    headings.append(Heading(level=level, text=title, id=anchor_id, anchor=f"#{anchor_id}"))
            child_ul = li.find("ul", recursive=False)
            if child_ul is not None:
                walk_list(child_ul, level + 1)

    if root_ul is not None:
        walk_list(root_ul, 1)
    return headings


def document_has_toc(html: str) -> bool:
    soup = _load_soup(html)
    if soup.find(id="toc") is not None:
        return True
    return soup.find("nav", class_="toc") is not None


def embed_styles(html: str, css: str) -> str:
    style_block = f"<style>\n{css.strip()}\n</style>\n"
    match = re.search(r"</head\s*>", html, flags=re.IGNORECASE)
    if match is None:
        return style_block + html
    return html[: match.start()] + style_block + html[match.start():]


_OPTION_KEYS = {
    "enabled": "enabled",
    "anchorDepth": "anchor_depth",
    "anchor_depth": "anchor_depth",
    "linkText": "link_text",
    "link_text": "link_text",
    "cssClasses": "css_classes",
    "css_classes": "css_classes",
    "alignment": "alignment",
}


def default_options_dict() -> Dict[str, Any]:
    return {
        "enabled": True,
        "anchorDepth": DEFAULT_ANCHOR_DEPTH,
        "alignment": "right",
        "cssClasses": dict(DEFAULT_CSS_CLASSES),
    }


def normalize_options_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError("Options must be a JSON object")
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        target = _OPTION_KEYS.get(key)
        if target is None:
            raise ValueError(f"Unknown option: {key}")
        normalized[target] = value
    return normalized


def merge_options_dicts(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = normalize_options_dict(base)
    for key, value in normalize_options_dict(overrides).items():
        if key == "css_classes" and isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def options_from_dict(data: Dict[str, Any]) -> AnchorLinksOptions:
    kwargs = normalize_options_dict(data)
    kwargs.setdefault("enabled", True)
    if not isinstance(kwargs["enabled"], bool):
        raise ValueError("Option 'enabled' must be a boolean")
    css_classes = kwargs.get("css_classes")
    if css_classes is not None and (
        not isinstance(css_classes, dict) or not all(isinstance(v, str) for v in css_classes.values())
    ):
        raise ValueError("Option 'cssClasses' must map container/link/text to strings")
    link_text = kwargs.get("link_text")
    if link_text is not None and not isinstance(link_text, str):
        raise ValueError("Option 'linkText' must be a string")
    return AnchorLinksOptions(**kwargs)


def write_options_file(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(default_options_dict(), ensure_ascii=False, indent=2) + "\n", encoding="utf-8")


def read_options_dict(path: Path) -> Dict[str, Any]:
    try:
        data_raw = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:
        raise ValueError(f"Unable to read options file {path}: {exc}") from exc
    try:
        options_from_dict(data_raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid options file {path}: {exc}") from exc
    return normalize_options_dict(data_raw)


def load_options_file(path: Path) -> AnchorLinksOptions:
    return options_from_dict(read_options_dict(path))


def safe_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8", newline="\n")


def run_anchor_links_pipeline(
    *,
    input_path: Path,
    output_path: Path,
    options: AnchorLinksOptions,
    toc_path: Optional[Path] = None,
    has_toc: Optional[bool] = None,
    translator: Optional[Translator] = None,
    css_path: Optional[Path] = None,
    embed_css: bool = False,
    report_path: Optional[Path] = None,
) -> AnchorLinksGenerationResult:
    try:
        html = input_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RuntimeError(f"Unable to read input document {input_path}: {exc}") from exc

    if toc_path is not None:
        headings = parse_toc_headings(toc_path)
        LOG.info("Loaded %d heading(s) from %s", len(headings), toc_path)
    else:
        headings = extract_headings(html)
        LOG.info("Found %d heading(s) with ids in %s", len(headings), input_path)

    if has_toc is None:
        has_toc = document_has_toc(html)
        LOG.debug("TOC element %s in document", "found" if has_toc else "not found")

    generator = AnchorLinksGenerator(options, translator)
    result = generator.insert_anchor_links(html, headings, has_toc)

    output_html = result.modified_html
    styles = generator.get_styles()
    if embed_css:
        output_html = embed_styles(output_html, styles)

    try:
        safe_write_text(output_path, output_html)
        if css_path is not None:
            safe_write_text(css_path, styles.strip() + "\n")
        if report_path is not None:
            safe_write_text(report_path, json.dumps(result.to_dict(), ensure_ascii=False, indent=2) + "\n")
    except OSError as exc:
        raise RuntimeError(f"Unable to write output: {exc}") from exc

    failed = [s.title for s in result.processed_sections if not s.has_anchor_link]
    LOG.info(
        "Inserted %d anchor link(s) across %d section(s)",
        result.links_inserted,
        len(result.processed_sections),
    )
    if failed:
        LOG.debug("Sections without anchor link: %s", failed)
    return result
