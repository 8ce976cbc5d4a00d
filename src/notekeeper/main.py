#!/usr/bin/env python
"""Command line interface for notekeeper."""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from notekeeper import __version__
from notekeeper.config import config
from notekeeper.exceptions import NotekeeperError, ValidationError
from notekeeper.models.db_models import init_db
from notekeeper.models.schema import DATE_DISPLAY_FORMAT, AttachmentKind, NoteSummary
from notekeeper.observability import configure_logging
from notekeeper.services.note_service import NoteService
from notekeeper.services.recording import StreamRecorder
from notekeeper.storage.blob_storage import BlobStorage
from notekeeper.utils import format_tags

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="notekeeper", description="Personal notes with images and voice memos"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--data-dir",
        help="Directory for stored images and voice memos",
        type=str,
        default=None,
    )
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=None,
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    list_cmd = commands.add_parser("list", help="List notes, newest first")
    list_cmd.add_argument("--search", help="Text to find in title or content")
    list_cmd.add_argument("--category", help="Only notes in this category")
    list_cmd.add_argument("--tag", help="Only notes with this tag")

    show_cmd = commands.add_parser("show", help="Show one note")
    show_cmd.add_argument("note_id")

    new_cmd = commands.add_parser("new", help="Create a note")
    new_cmd.add_argument("--title", required=True)
    new_cmd.add_argument("--content")
    new_cmd.add_argument("--category")
    new_cmd.add_argument("--tags", help="Comma-separated tags")
    new_cmd.add_argument("--image", action="append", default=[], metavar="FILE")
    new_cmd.add_argument("--audio", action="append", default=[], metavar="FILE")

    edit_cmd = commands.add_parser("edit", help="Change a note")
    edit_cmd.add_argument("note_id")
    edit_cmd.add_argument("--title")
    edit_cmd.add_argument("--content")
    edit_cmd.add_argument("--category")
    edit_cmd.add_argument("--tags", help="Comma-separated tags")
    edit_cmd.add_argument("--add-image", action="append", default=[], metavar="FILE")
    edit_cmd.add_argument(
        "--remove-image", action="append", default=[], type=int, metavar="N"
    )
    edit_cmd.add_argument("--add-audio", action="append", default=[], metavar="FILE")
    edit_cmd.add_argument(
        "--remove-audio", action="append", default=[], type=int, metavar="N"
    )

    delete_cmd = commands.add_parser("delete", help="Delete a note and its attachments")
    delete_cmd.add_argument("note_id")

    commands.add_parser("categories", help="List categories in use")
    commands.add_parser("tags", help="List tags with note counts")

    export_cmd = commands.add_parser("export", help="Print a note as Markdown")
    export_cmd.add_argument("note_id")

    commands.add_parser("clean", help="Remove stored files no note refers to")
    return parser


def update_config(args) -> None:
    """Update the global config with command line arguments."""
    if args.data_dir:
        config.data_dir = Path(args.data_dir)
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.log_level:
        config.log_level = args.log_level


def create_service() -> NoteService:
    """Wire the service to the configured database and data directory."""
    engine = init_db(config.get_db_url())
    return NoteService(engine=engine, blobs=BlobStorage(config.get_data_dir()))


def _existing_file(value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_file():
        raise ValidationError(f"File not found: {value}", field="file", value=value)
    return path


def _add_media(session, images: List[str], audio: List[str]) -> None:
    for value in images:
        session.on_media_picked(AttachmentKind.IMAGE, _existing_file(value))
    for value in audio:
        recorder = StreamRecorder.from_file(session.service.blobs, _existing_file(value))
        if session.record_audio(recorder) is None:
            raise ValidationError(
                f"Could not import audio: {value}", field="audio", value=value
            )


def _print_summary(summary: NoteSummary) -> None:
    badges = []
    if summary.category:
        badges.append(f"[{summary.category}]")
    if summary.image_count:
        badges.append(f"{summary.image_count} img")
    if summary.audio_count:
        badges.append(f"{summary.audio_count} audio")
    suffix = f"  {' '.join(badges)}" if badges else ""
    print(f"{summary.note_id}  {summary.date_label}  {summary.title}{suffix}")
    print(f"    {summary.preview}")


def cmd_list(service: NoteService, args) -> int:
    summaries = service.list_summaries(
        search=args.search, category=args.category, tag=args.tag
    )
    if not summaries:
        print("No notes found.")
        return 0
    for summary in summaries:
        _print_summary(summary)
    return 0


def cmd_show(service: NoteService, args) -> int:
    note = service.require_note(args.note_id)
    print(note.title)
    print(f"ID:       {note.id}")
    if note.category:
        print(f"Category: {note.category}")
    if note.tags:
        print(f"Tags:     {format_tags(note.tags)}")
    print(f"Created:  {note.created_at.strftime(DATE_DISPLAY_FORMAT)}")
    print(f"Modified: {note.updated_at.strftime(DATE_DISPLAY_FORMAT)}")
    for label, kind in (("Images", AttachmentKind.IMAGE), ("Audio", AttachmentKind.AUDIO)):
        paths = note.attachment_paths(kind)
        if paths:
            print(f"{label}:")
            for index, path in enumerate(paths):
                print(f"  {index}: {path}")
    if note.content:
        print()
        print(note.content)
    return 0


def cmd_new(service: NoteService, args) -> int:
    session = service.open_editor()
    try:
        session.on_text_changed("title", args.title)
        session.on_text_changed("content", args.content)
        session.on_text_changed("category", args.category)
        session.on_text_changed("tags", args.tags)
        _add_media(session, args.image, args.audio)
        note = session.save()
    except NotekeeperError:
        if not session.is_closed:
            session.cancel()
        raise
    print(note.id)
    return 0


def cmd_edit(service: NoteService, args) -> int:
    session = service.open_editor(args.note_id)
    try:
        for field in ("title", "content", "category", "tags"):
            value = getattr(args, field)
            if value is not None:
                session.on_text_changed(field, value)
        # Highest index first so the others keep their positions
        for index in sorted(set(args.remove_image), reverse=True):
            session.remove_media(AttachmentKind.IMAGE, index)
        for index in sorted(set(args.remove_audio), reverse=True):
            session.remove_media(AttachmentKind.AUDIO, index)
        _add_media(session, args.add_image, args.add_audio)
        if not session.has_changes:
            session.cancel()
            print("Nothing to change.")
            return 0
        note = session.save()
    except NotekeeperError:
        if not session.is_closed:
            session.cancel()
        raise
    report = session.last_report
    if report is not None and report.failures:
        for failure in report.failures:
            print(f"warning: {failure}", file=sys.stderr)
    print(note.id)
    return 0


def cmd_delete(service: NoteService, args) -> int:
    service.delete_note(args.note_id)
    print(f"Deleted {args.note_id}")
    return 0


def cmd_categories(service: NoteService, args) -> int:
    for category in service.get_categories():
        print(category)
    return 0


def cmd_tags(service: NoteService, args) -> int:
    for name, count in service.get_tags_with_counts().items():
        if count:
            print(f"{name} ({count})")
    return 0


def cmd_export(service: NoteService, args) -> int:
    print(service.export_note(args.note_id))
    return 0


def cmd_clean(service: NoteService, args) -> int:
    removed = service.clean_orphaned_blobs()
    tags = service.delete_unused_tags()
    print(f"Removed {len(removed)} files and {tags} unused tags")
    return 0


COMMANDS = {
    "list": cmd_list,
    "show": cmd_show,
    "new": cmd_new,
    "edit": cmd_edit,
    "delete": cmd_delete,
    "categories": cmd_categories,
    "tags": cmd_tags,
    "export": cmd_export,
    "clean": cmd_clean,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Run the notekeeper command line."""
    args = build_parser().parse_args(argv)
    update_config(args)

    log_level = getattr(logging, config.log_level.upper(), logging.WARNING)
    try:
        configure_logging(log_dir=config.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logger.warning(f"Failed to configure file logging: {e}")

    try:
        service = create_service()
        return COMMANDS[args.command](service, args)
    except NotekeeperError as e:
        logger.debug(f"Command {args.command} failed: {e}")
        print(f"error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
