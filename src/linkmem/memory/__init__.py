"""Memory store, link graph and search index.

Layout:
    <store_dir>/
    ├── general|deploy-checklist|0f8fad5b-....md   # category|slug(title)|id.md
    ├── ops|incident-runbook|7c9e6679-....md       # YAML frontmatter + Markdown body
    └── notes.md                                   # ignored: not a memory file name

    <index_dir>/
    └── memory-index.sqlite                        # FTS5 index, rebuilt on demand

Links live twice: ids in the ``links`` header field and ``[[Title]]`` markers
under a ``## Related`` heading in the body. See ``audit`` for the checks that
keep the two honest.
"""
