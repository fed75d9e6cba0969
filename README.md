# sqlitepool

An SQLite client for applications that read a lot and write a little. Queries
run on a pool of up to eight read-only connections. Writes run on a single
read-write connection. Databases are opened in WAL mode by default, so readers
do not block the writer. The package can also apply plain `.sql` migration
files and records each one it has run. It uses only the standard library's
`sqlite3` module.

## Installation

```
pip install sqlitepool
```

To run the tests as well:

```
pip install "sqlitepool[test]"
pytest
```

## Opening a database

```python
from sqlitepool.db import Config, open_db

with open_db(Config(db_path="app.db")) as db:
    db.execute("CREATE TABLE IF NOT EXISTS users (id INTEGER PRIMARY KEY, name TEXT)")
    cur = db.execute("INSERT INTO users (name) VALUES (?)", "Alice")
    print(cur.lastrowid)

    print(db.query_row("SELECT name FROM users WHERE id = ?", 1))   # ('Alice',) or None
    for (name,) in db.query("SELECT name FROM users"):
        print(name)
```

`Config` has four fields, and all of them are optional:

| field     | meaning                                                |
|-----------|--------------------------------------------------------|
| `db_path` | database file; defaults to `app.db`                    |
| `driver`  | `"sqlite"` (the default) or `"sqlite3"`; any other value raises `ValueError` |
| `r_dsn`   | connection string for the read pool                    |
| `w_dsn`   | connection string for the write pool                   |

`open_db` connects the writer first and checks that connection before it sets
up the read pool. This way the WAL and shared-memory files exist before any
reader opens the database. If `open_db` is called with no config, it uses
`Config()`.

When you open a database by path, the readers use mode `ro` and the writer uses
mode `rwc`. Every connection runs these pragmas:

- `journal_mode(WAL)`
- `busy_timeout(5000)`
- `foreign_keys(ON)`
- `cache_size(64)`
- `temp_store(MEMORY)`
- `mmap_size(268435456)`

The writer also runs `synchronous(NORMAL)`.

### Custom connection strings

The client uses `r_dsn` and `w_dsn` only when both are set. A string that
starts with `file:` is opened as an SQLite URI. Each of its `_pragma=...`
parameters is run as a `PRAGMA` statement. Other parameters whose names begin
with `_` are dropped, and all remaining parameters, such as `mode`, are passed
on. A string that does not start with `file:` is passed to `sqlite3.connect`
unchanged.

```python
dsn = "file:app.db?mode=rwc&_pragma=journal_mode(WAL)&_pragma=busy_timeout(5000)"
db = open_db(Config(r_dsn=dsn, w_dsn=dsn))
```

## The client

`DbClient` sends each call to one of its two pools:

- `query(sql, *args)` returns all rows as a list of tuples. It uses the read pool.
- `query_row(sql, *args)` returns the first row, or `None` if there is none. It
  uses the read pool.
- `execute(sql, *args)` runs on the writer and returns the cursor, which gives
  access to `lastrowid` and `rowcount`. The SQL may hold several statements
  separated by `;`, but only when no arguments are given. Several statements
  together with arguments raise `sqlite3.ProgrammingError`.
- `begin()` starts a `Transaction` on the writer.
- `prepare(sql)` returns a `Statement`. SQL that starts with `SELECT` (in any
  case, with leading whitespace allowed) is bound to the read pool. All other
  SQL is bound to the writer.
- `ping()` checks that both pools can hand out a working connection.
- `close()` closes both pools. After that, `ping()` and every other call raise
  `sqlite3.ProgrammingError`. Using the client as a context manager closes it
  on exit.

### Transactions

```python
with db.begin() as tx:
    tx.execute("INSERT INTO users (name) VALUES (?)", "Bob")
# committed on success, rolled back if the block raises
```

You can also call `commit()` or `rollback()` yourself. The transaction holds the
write connection until one of them runs. Using a transaction after it has ended
raises `sqlite3.ProgrammingError`. If `COMMIT` fails, the transaction is rolled
back and the error is raised again.

### Prepared statements

```python
stmt = db.prepare("SELECT name FROM users WHERE id = ?")
print(stmt.query_row(1))
stmt.close()
```

`Statement` has `execute(*args)`, `query(*args)`, `query_row(*args)` and
`close()`. Each call borrows a connection from the pool the statement is bound
to. Calling any of these methods after `close()` raises
`sqlite3.ProgrammingError`.

## Migrations

A migrations directory holds only files. Each file name is
`<integer><sep><description>`, for example `20230101000000_init.sql`. The
integer may have a sign and must fit in a signed 64-bit value.

```python
db.run_migrations("migrations", "_")
print(db.list_migrations())
```

`run_migrations` first creates a `migrations` table if it does not exist. That
table stores the name, the content, and the created and updated times of each
migration. The function then goes through the directory in file-name order:

- If a file has not been applied, its content is decoded as UTF-8 and run. The
  file is then recorded. Both steps happen in one transaction.
- If a file has been applied and its content is unchanged, it is skipped.
- If a file has been applied but its content has changed, a unified diff is
  printed to standard output and `MigrationError` is raised. Put such changes
  into a new migration file instead.

`validate_migration_file(path, sep)` runs on every entry before anything else.
It raises `MigrationError` with one of these messages:

- `only files are allowed in migrations folder`
- `migration file name separator not found`
- `migration file name prefix is not a number`

`list_migrations()` returns the names of the applied migrations.

Migrations only go forward. There is no way to undo or roll back a migration
that has been applied.

## Command line

The `mig8` command creates, runs and lists migrations. It reads the migrations
directory from `MIG_DIR` and the database path from `DB_PATH`. The `-dir` and
`-db` options override them. If either environment variable is missing, a
warning is logged. If either value is still empty after the options are read,
the command exits with status 1.

```
mig8 -db app.db -dir migrations -file add_users_table   # creates migrations/<YYYYmmddHHMMSS>_add_users_table.sql
mig8 -db app.db -dir migrations -run                    # applies pending migrations
mig8 -db app.db -dir migrations -list                   # lists applied migrations
```

| option  | meaning                                                   |
|---------|-----------------------------------------------------------|
| `-dir`  | migrations directory                                      |
| `-db`   | database file                                             |
| `-file` | create an empty migration file with this name             |
| `-sep`  | separator in file names; defaults to `_`                  |
| `-run`  | apply pending migrations                                  |
| `-list` | list applied migrations                                   |

Each option can also be written with two dashes, for example `--run`.

`-file` creates a file only when neither `-run` nor `-list` is given. It creates
the directory if it is missing. The command opens the database before it does
anything else. Messages go to standard output as `key=value` log lines. The
exit status is 0 on success and 1 on failure. The same code can be called from
Python as `sqlitepool.mig8.main(argv)`, which returns the status. An empty file
can be created with `sqlitepool.mig8.generate_file(directory, file_name, sep)`,
which returns the path of the new file.