"""CLI script to import a character CSV into a user's store.
Usage: python scripts/import_characters.py --user NAME FILE.csv [FILE.csv ...]
"""
import sys
import argparse
import pathlib
from typing import List
# Ensure `backend/` is on sys.path so `hanzi` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from hanzi import repositories, services
from hanzi.errors import HanziError


def main(username: str, files: List[pathlib.Path]) -> int:
    """Import each file for `username` and print a per-file summary.

    Returns a process exit code: 0 when every file imported, 1 otherwise.
    """
    if not repositories.UserRepository().exists(username):
        print(f'Unknown user: {username}')
        return 1
    svc = services.CharacterService(username)
    total_added = 0
    total_skipped = 0
    failed = 0
    for f in files:
        try:
            result = svc.import_csv(f.read_bytes(), f.name)
        except (OSError, HanziError) as e:
            failed += 1
            print(f'Error importing {f}: {getattr(e, "detail", e)}')
            continue
        total_added += result['added']
        total_skipped += result['skipped']
        print(f'Imported {f}: added {result["added"]}, skipped {result["skipped"]}, errors {len(result["errors"])}')
        for err in result['errors']:
            print(f'  {err}')
    print(f'Total added: {total_added}, skipped {total_skipped}')
    return 1 if failed else 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--user', required=True, help='Username whose list receives the characters')
    parser.add_argument('files', nargs='+', type=pathlib.Path, help='CSV files with Character,Pinyin,Meaning,Phrase rows')
    args = parser.parse_args()
    sys.exit(main(args.user, args.files))
