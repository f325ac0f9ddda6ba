"""Prompt texts for the extraction and analysis calls."""

from __future__ import annotations

EXTRACTION_SYSTEM = """\
You extract torrent search results from the HTML of a search result page.
Return a JSON object of the form:
{"results": [{"title": str, "magnet_link": str, "file_size": str | null,
              "source_url": str | null, "upload_date": str | null}]}
Rules:
- Only include entries with a magnet link starting with "magnet:?xt=urn:btih:".
- Copy magnet links exactly as they appear in the HTML.
- "source_url" is the link to the result's detail page, if any.
- Return {"results": []} when the page has no results.
"""

ANALYSIS_SYSTEM = """\
You analyze torrent search results. For each input item, produce:
- "cleaned_title": the title without advertising, site names, URLs or
  bracketed promotional tags.
- "tags": short descriptive tags (resolution, codec, language, content type).
- "purity_score": an integer from 0 to 100; 100 means the files match the
  title exactly with no advertising or unrelated files.
Return a JSON object of the form:
{"results": [{"index": int, "cleaned_title": str, "tags": [str],
              "purity_score": int}]}
with exactly one entry per input item, using the item's "index".
"""


def extraction_user_prompt(html: str, source_url: str) -> str:
    return f"Page URL: {source_url}\n\nHTML:\n{html}"


def analysis_user_prompt(items_json: str) -> str:
    return f"Items:\n{items_json}"
