"""
Utility script to generate and write the OpenAPI schema for the FastAPI app.

This script imports the FastAPI application instance and serializes its OpenAPI
schema to the interfaces/openapi.json file so that API clients and documentation
tools can consume a stable schema without running the server.

Usage:
    python -m taskboard.api.generate_openapi [output_dir]

Notes:
- Every tag declared in taskboard.api.main.openapi_tags is kept in the output.
- Output goes to <output_dir>/openapi.json, 'interfaces' under the working directory by default.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

# Import the FastAPI app from the main module
# This ensures we reuse the same app configuration, routes, and tags.
from .main import app, openapi_tags

logger = logging.getLogger(__name__)


def _ensure_tags(schema: Dict[str, Any]) -> None:
    """
    Ensure the OpenAPI schema contains the expected tags metadata. This does
    not override existing tag definitions unless missing.
    """
    existing_tags: List[Dict[str, Any]] = schema.get("tags", []) or []
    existing_names = {t.get("name") for t in existing_tags if isinstance(t, dict)}
    for tag in openapi_tags:
        if tag.get("name") not in existing_names:
            existing_tags.append(tag)
    if existing_tags:
        schema["tags"] = existing_tags


# PUBLIC_INTERFACE
def generate_openapi(output_dir: Optional[str] = None) -> str:
    """Generate the OpenAPI schema file and return the written file path."""
    schema = app.openapi()
    _ensure_tags(schema)

    interfaces_dir = output_dir or os.path.join(os.getcwd(), "interfaces")
    os.makedirs(interfaces_dir, exist_ok=True)
    out_path = os.path.join(interfaces_dir, "openapi.json")

    # Write the schema with pretty formatting for readability
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(schema, f, indent=2, ensure_ascii=False)
    logger.info("Wrote OpenAPI schema to %s", out_path)
    return out_path


def main() -> None:
    path = generate_openapi(sys.argv[1] if len(sys.argv) > 1 else None)
    print(f"Wrote OpenAPI schema to: {path}")


if __name__ == "__main__":
    main()
