# ankiced

`ankiced` is a Python library that works directly on an Anki collection
database (`collection.anki2`). With it you can list and search decks, rename
them, look up, count and edit notes, and run an HTML cleaner over every note
of a deck, either as a dry run that only shows a diff or as a real write to
the database.

## Installing

```
pip install .
pip install ".[test]"   # adds pytest for running the test suite
```

## Configuration

`ankiced.loader.load(args)` builds a `ankiced.settings.Settings` from four
layers, each overriding the previous one:

1. built-in defaults: 4 workers, 3 backups kept, page size 10, HTTP address
   `127.0.0.1:8080`, `WAL` journal mode, `NORMAL` synchronous, busy timeout
   5000 ms;
2. a config file in YAML (`.yaml`/`.yml`) or JSON (any other extension),
   given with `--config` or found in the working directory as `config.yaml`,
   `config.yml`, `config.json`, `ankiced.yaml`, `ankiced.yml`,
   `ankiced.json`, or the same `ankiced.*` names inside a `config/`
   directory. Keys are the field names of `Settings` (`db_path`,
   `anki_account`, `backup_keep_last_n`, `workers`, `force_apply`,
   `verbose`, `full_diff`, `report_file`, `default_page_size`,
   `pragma_busy_timeout`, `pragma_journal_mode`, `pragma_synchronous`,
   `http_addr`). Boolean values in the file can only switch an option on;
3. environment variables: `ANKICED_DB_PATH`, `ANKICED_ANKI_ACCOUNT`,
   `ANKICED_HTTP_ADDR`, `ANKICED_BACKUP_KEEP`, `ANKICED_WORKERS`,
   `ANKICED_FORCE_APPLY`, `ANKICED_VERBOSE`, `ANKICED_PAGE_SIZE`,
   `ANKICED_BUSY_TIMEOUT_MS`, `ANKICED_PRAGMA_JOURNAL_MODE` and
   `ANKICED_PRAGMA_SYNCHRONOUS`;
4. the argument list: `--db-path`, `--anki-account`, `--http-addr`,
   `--config`, `--backup-keep`, `--workers`, `--force-apply`, `--verbose`,
   `--full-diff`, `--report-file`, `--page-size`, `--busy-timeout-ms`,
   `--pragma-journal-mode` and `--pragma-synchronous` (one or two leading
   dashes, `--name value` or `--name=value`). An unknown or malformed
   argument raises `ValueError`.

When `args` is `None`, `sys.argv[1:]` is used. When no database path is set,
the usual Anki location for the platform under the home directory is used,
with the profile named by the Anki account (default `User 1`); if that cannot
be worked out either, an `AppError` with code `DATABASE_PATH_EMPTY` is raised.

A sample `config.yaml`:

```yaml
anki_account: someone@example.com
backup_keep_last_n: 5
workers: 8
full_diff: true
```

## Using it from Python

```python
from ankiced.loader import load
from ankiced.database import Pragmas, open_database
from ankiced.bootstrap import new_services
from ankiced.domain import FilterSet, Pagination

cfg = load(["--db-path", "/path/to/collection.anki2"])
db = open_database(
    cfg.db_path,
    Pragmas(cfg.pragma_busy_timeout, cfg.pragma_journal_mode, cfg.pragma_synchronous),
)
services = new_services(cfg, db, None)

for deck in services.list_decks():
    print(deck.id, deck.name, deck.card_count)

notes = services.list_notes(FilterSet(deck_id=1), Pagination(limit=20))
note = services.get_note(notes[0].id)   # fields named after the note's model
```

`open_database` checks the journal mode and synchronous values against a
whitelist (`InvalidJournalModeError`, `InvalidSynchronousError`). A
`Database` can be used as a context manager, switched to another file with
`reconnect`, and runs work in a transaction with `transaction()` or
`with_tx(fn)`.

`Services` offers `list_decks`, `search_decks`, `rename_deck`, `list_notes`,
`count_notes`, `get_note`, `update_note`, `preview_cleaner` and
`run_cleaner`. Note models are read from the `fields` table, falling back to
the `models` table and then to the `col.models` JSON of older collections.

### The cleaner

A dry run returns the rendered diff and a summary:

```python
diff, summary = services.run_cleaner(cfg, deck_id, True, "", None)
print(diff)
print(summary.processed, summary.changed, summary.skipped, summary.errors)
```

Notes are transformed on `cfg.workers` threads; the first failure stops the
run and is raised. A real run (`dry_run=False`) writes the changed notes in
transactions of 1000 notes. Unless `cfg.force_apply` is set, it first asks the
services' confirm prompter, an object with a `confirm(prompt) -> bool`
method; with no prompter, or on a "no", it raises an `AppError` with code
`OPERATION_CANCELLED`. When `cfg.report_file` is set, a JSON report of the
records and summary is written there. A callable passed as the last argument
receives `CleanerProgress` events (`started`, `transforming`, `transformed`,
`writing`, `finished` or `failed`).

The HTML cleaner is also available on its own. It keeps only `b`, `i`, `u`,
`strong`, `span`, `div`, `br` and `img` (with `src`, `alt`, `title`, `width`
and `height`, and only scheme-less, `http`, `https` or `data` image URLs),
drops every attribute of the other kept tags, and drops every other tag while
keeping its text:

```python
from ankiced.sanitize import keep_basic_tags, strip_all_tags

keep_basic_tags('<span style="color:red">x</span>')   # '<span>x</span>'
strip_all_tags("<p>Hello <b>world</b></p>")           # 'Hello world'
```

### Backups

Before the first write to a database (deck rename, note update or cleaner
apply), the services copy it next to itself as
`collection.anki2.<YYYYmmdd_HHMMSS>.bak`; a `BackupStore` makes at most one
backup per path, and afterwards only the newest `backup_keep_last_n` backups
are kept.

## Errors

Failures are raised as exceptions. Application-level errors are
`ankiced.errors.AppError` instances carrying a code from
`ankiced.errors.Code` (for example `DECK_NOT_FOUND`, `NOTE_NOT_FOUND` or
`OPERATION_CANCELLED`), and `ankiced.errors.has_code` tells whether an error,
or its cause chain, carries a given code. Validation problems such as an
empty, too long or control-character deck name, a name conflict or a wrong
field count raise the `DomainError` subclasses in `ankiced.domain`.

## What it does not do

`ankiced` is a library only. It installs no command to run, serves no HTTP
API or web page, has no desktop window, and ships no interactive prompt for
confirming writes; callers supply their own confirm prompter or set
`force_apply`. `ankiced.browser.open_url` can start the platform's browser
for a URL, but nothing in the package serves one.