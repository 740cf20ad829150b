"""Cross-cutting helpers: logging, errors, schema base."""
