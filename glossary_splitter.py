from langchain_core.documents import Document
from dotenv import dotenv_values
import os
import re
import sys
import json
import logging
import shutil
from typing import List, Dict, Any, Optional, Tuple
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

COLLISION_POLICIES = ("overwrite", "suffix", "error")

# Label of a term section: text after the delimiter up to the first "]]" on the same line
LABEL_PATTERN = re.compile(r"^[ \t]*(.*?)\]\]")

ENV_PREFIX = "GLOSSARY_SPLITTER_"


def setup_logging(level: Any = logging.INFO, log_file: Optional[str] = None) -> None:
    """Configure root logging for command-line use"""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)


class GlossarySplitterError(Exception):
    """Base exception for glossary splitter errors"""
    pass

class ConfigurationError(GlossarySplitterError):
    """Raised when the splitter configuration is invalid"""
    pass

class PreconditionError(GlossarySplitterError):
    """Raised when it is not safe to split; nothing has been modified"""
    pass

class ManifestNotFoundError(PreconditionError):
    """Raised when the manifest file does not exist"""
    pass

class SourceNotFoundError(PreconditionError):
    """Raised when the glossary source file does not exist"""
    pass

class DestinationNotEmptyError(PreconditionError):
    """Raised when the destination already holds split output"""
    pass

class StorageError(GlossarySplitterError):
    """Raised when reading, writing or copying a file fails"""
    pass

class ManifestFormatError(GlossarySplitterError):
    """Raised when the manifest is not valid JSON or lacks specs[0].markdown_paths"""
    pass

class AnchorNotFoundError(GlossarySplitterError):
    """Raised when the source file is not listed in the manifest"""
    pass

class MalformedGlossaryError(GlossarySplitterError):
    """Raised in strict mode when a term section has no label"""
    pass

class SlugCollisionError(GlossarySplitterError):
    """Raised when two terms map to the same file name"""
    pass


def _parse_bool(value: Any) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class SplitterConfig:
    """Configuration for glossary splitter"""
    root: str = "."
    manifest_filename: str = "specs.json"
    snapshot_filename: str = "specs.unsplit.json"
    intro_filename: str = "glossaryIntro.md"
    delimiter: str = "[[def:"
    encoding: str = "utf-8"
    on_collision: str = "overwrite"
    strict: bool = False

    def __post_init__(self):
        if self.on_collision not in COLLISION_POLICIES:
            raise ConfigurationError(
                f"Unknown collision policy '{self.on_collision}', "
                f"expected one of {', '.join(COLLISION_POLICIES)}"
            )
        if not self.delimiter:
            raise ConfigurationError("Delimiter must not be empty")
        if self.manifest_filename == self.snapshot_filename:
            raise ConfigurationError("Snapshot must not be the manifest itself")

    @property
    def manifest_path(self) -> str:
        return os.path.join(self.root, self.manifest_filename)

    @property
    def snapshot_path(self) -> str:
        return os.path.join(self.root, self.snapshot_filename)

    def resolve(self, path: str) -> str:
        """Resolve a project-relative path against the root"""
        if os.path.isabs(path):
            return path
        return os.path.join(self.root, path)

    @classmethod
    def from_env(cls, root: str = ".", env_file: str = ".env") -> "SplitterConfig":
        """
        Build a configuration from GLOSSARY_SPLITTER_* settings

        Values come from the .env file in the root, overridden by the
        process environment.

        Args:
            root: Project root holding the manifest
            env_file: Name of the dotenv file inside the root

        Raises:
            ConfigurationError: If a setting has an invalid value
        """
        values = {**dotenv_values(os.path.join(root, env_file)), **os.environ}
        kwargs: Dict[str, Any] = {"root": root}
        for name in ("manifest_filename", "snapshot_filename", "intro_filename",
                     "delimiter", "encoding", "on_collision", "strict"):
            value = values.get(ENV_PREFIX + name.upper())
            if value is not None:
                kwargs[name] = value
        if "strict" in kwargs:
            kwargs["strict"] = _parse_bool(kwargs["strict"])
        return cls(**kwargs)


@dataclass
class SplitResult:
    """Outcome of one split run"""
    intro_path: str
    term_paths: List[str] = field(default_factory=list)
    skipped_sections: List[Document] = field(default_factory=list)
    markdown_paths: List[str] = field(default_factory=list)


def to_manifest_path(*parts: str) -> str:
    """Join path parts into the normalized forward-slash form stored in the manifest"""
    return os.path.normpath(os.path.join(*parts)).replace(os.sep, "/")


def read_text(file_path: str, encoding: str = 'utf-8') -> str:
    """
    Read a text file without newline translation

    Raises:
        StorageError: If the file cannot be read or decoded
    """
    try:
        with open(file_path, 'r', encoding=encoding, newline='') as f:
            return f.read()
    except UnicodeDecodeError as e:
        raise StorageError(f"Failed to decode file {file_path} with encoding {encoding}: {str(e)}") from e
    except OSError as e:
        raise StorageError(f"Error reading file {file_path}: {str(e)}") from e


def write_text(content: str, file_path: str, encoding: str = 'utf-8') -> None:
    """
    Write a text file without newline translation

    Raises:
        StorageError: If the file cannot be written
    """
    try:
        with open(file_path, 'w', encoding=encoding, newline='') as f:
            f.write(content)
        logger.info(f"Successfully wrote file: {file_path}")
    except OSError as e:
        raise StorageError(f"Error writing file {file_path}: {str(e)}") from e


def ensure_restore_point(config: SplitterConfig) -> None:
    """
    Capture the pristine manifest once, then restore it

    The snapshot is written only when absent. The live manifest is always
    overwritten with the snapshot so each run starts from the unsplit state.

    Raises:
        StorageError: If either copy fails
    """
    manifest_path = config.manifest_path
    snapshot_path = config.snapshot_path
    try:
        if not os.path.exists(snapshot_path):
            shutil.copyfile(manifest_path, snapshot_path)
            logger.info(f"Created one-time backup {snapshot_path}")
        shutil.copyfile(snapshot_path, manifest_path)
        logger.info(f"Restored {manifest_path} from {snapshot_path}")
    except OSError as e:
        raise StorageError(f"Failed to restore manifest from backup: {str(e)}") from e


def _first_spec(manifest: Any) -> Dict[str, Any]:
    try:
        spec = manifest["specs"][0]
    except (KeyError, IndexError, TypeError) as e:
        raise ManifestFormatError("Manifest has no spec configuration at specs[0]") from e
    if not isinstance(spec, dict):
        raise ManifestFormatError("specs[0] is not an object")
    return spec


def get_markdown_paths(manifest: Dict[str, Any]) -> List[str]:
    """Ordered markdown_paths of the first spec configuration"""
    paths = _first_spec(manifest).get("markdown_paths")
    if not isinstance(paths, list):
        raise ManifestFormatError("specs[0].markdown_paths is missing or not a list")
    return paths


def get_spec_directory(manifest: Dict[str, Any]) -> str:
    spec_directory = _first_spec(manifest).get("spec_directory", ".")
    if not isinstance(spec_directory, str):
        raise ManifestFormatError("specs[0].spec_directory is not a string")
    return spec_directory


def load_manifest(file_path: str, encoding: str = 'utf-8') -> Dict[str, Any]:
    """
    Load and validate the manifest

    Only the first spec configuration is used by the splitter.

    Raises:
        StorageError: If the file cannot be read
        ManifestFormatError: If the content is not a usable manifest
    """
    text = read_text(file_path, encoding)
    try:
        manifest = json.loads(text)
    except json.JSONDecodeError as e:
        raise ManifestFormatError(f"Manifest {file_path} is not valid JSON: {str(e)}") from e
    get_markdown_paths(manifest)
    return manifest


def save_manifest(manifest: Dict[str, Any], file_path: str, encoding: str = 'utf-8') -> None:
    """Replace the manifest file with the serialized manifest"""
    write_text(json.dumps(manifest, indent=2, ensure_ascii=False), file_path, encoding)


def term_name(label: str) -> str:
    """Canonical term name: the label up to the first comma"""
    return label.split(",")[0].strip()


def term_aliases(label: str) -> List[str]:
    return [alias.strip() for alias in label.split(",")[1:] if alias.strip()]


def derive_slug(label: str) -> str:
    """
    Derive a filename stem from a term label

    Aliases after the first comma are ignored, path separators and spaces
    become hyphens and the result is lowercased.

    >>> derive_slug("Foo Bar, alias")
    'foo-bar'
    """
    slug = term_name(label).replace(",", "")
    slug = re.sub(r"[/\\]", "-", slug)
    return slug.replace(" ", "-").lower()


def parse_glossary(text: str, delimiter: str = "[[def:") -> Tuple[str, List[Document]]:
    """
    Split glossary text into its introduction and term sections

    Every fragment after a delimiter becomes one Document whose page_content
    is the fragment verbatim (without the delimiter). The label is read from
    the start of the fragment itself, so labels and bodies always line up.
    A fragment with no closing "]]" on its first line gets term=None.

    Args:
        text: Full glossary source
        delimiter: Marker opening each term section

    Returns:
        Tuple[str, List[Document]]: (introduction, term sections)
    """
    intro, *fragments = text.split(delimiter)
    sections = []
    for index, fragment in enumerate(fragments):
        match = LABEL_PATTERN.match(fragment)
        label = match.group(1) if match else None
        metadata: Dict[str, Any] = {"index": index, "term": label}
        if label is not None:
            metadata["name"] = term_name(label)
            metadata["aliases"] = term_aliases(label)
        sections.append(Document(page_content=fragment, metadata=metadata))
    return intro, sections


def assign_filenames(labels: List[str], on_collision: str = "overwrite") -> List[str]:
    """
    Map term labels to output file names, applying the collision policy

    overwrite keeps the duplicate name (last write wins), suffix appends
    -2, -3, ... and error refuses the whole split.

    Raises:
        SlugCollisionError: On a duplicate name under the error policy
    """
    filenames = []
    taken: Dict[str, str] = {}
    for label in labels:
        slug = derive_slug(label)
        filename = f"{slug}.md"
        if filename in taken:
            if on_collision == "error":
                raise SlugCollisionError(
                    f"Terms '{taken[filename]}' and '{label}' both map to {filename}"
                )
            if on_collision == "suffix":
                counter = 2
                while f"{slug}-{counter}.md" in taken:
                    counter += 1
                filename = f"{slug}-{counter}.md"
                logger.warning(f"Term '{label}' renamed to {filename} to avoid a collision")
            else:
                logger.warning(f"Term '{label}' overwrites {filename} written for '{taken[filename]}'")
        taken[filename] = label
        filenames.append(filename)
    return filenames


def locate_anchor(paths: List[str], anchor: str) -> int:
    try:
        return paths.index(anchor)
    except ValueError:
        raise AnchorNotFoundError(f"'{anchor}' is not listed in markdown_paths") from None


def splice_paths(paths: List[str], anchor: str, replacements: List[str]) -> List[str]:
    """Return a copy of paths with anchor replaced in place by replacements"""
    index = locate_anchor(paths, anchor)
    return paths[:index] + list(replacements) + paths[index + 1:]


def fix_glossary_text(text: str, delimiter: str = "[[def:") -> str:
    """Put exactly one space between the delimiter and the term label"""
    return re.sub(re.escape(delimiter) + r"[ \t]*(?=\S)", lambda _: delimiter + " ", text)


def fix_glossary_file(file_path: str, delimiter: str = "[[def:", encoding: str = 'utf-8') -> bool:
    """
    Repair known formatting issues of the glossary in place

    Returns:
        bool: True if the file was changed
    """
    text = read_text(file_path, encoding)
    fixed = fix_glossary_text(text, delimiter)
    if fixed == text:
        return False
    write_text(fixed, file_path, encoding)
    logger.info(f"Fixed formatting in {file_path}")
    return True


def check_preconditions(config: SplitterConfig, source: str, destination: str) -> None:
    """
    Refuse to split unless the manifest and source exist and the
    destination holds no .md files

    Raises:
        ManifestNotFoundError, SourceNotFoundError, DestinationNotEmptyError
    """
    logger.info("Only split if all conditions are met")
    if not os.path.isfile(config.manifest_path):
        raise ManifestNotFoundError(f"{config.manifest_path} not found")

    source_path = config.resolve(source)
    if not os.path.isfile(source_path):
        raise SourceNotFoundError(f"File not found: {source_path}")

    destination_path = config.resolve(destination)
    if os.path.isdir(destination_path):
        try:
            md_files = [f for f in os.listdir(destination_path) if f.endswith(".md")]
        except OSError as e:
            raise StorageError(f"Failed to list {destination_path}: {str(e)}") from e
        if md_files:
            raise DestinationNotEmptyError(
                f"{destination_path} already contains {len(md_files)} .md file(s)"
            )
    logger.info("All conditions met")


def split(config: SplitterConfig, source: str, destination: str) -> SplitResult:
    """
    Split the glossary into one file per term and rewrite the manifest

    The introduction goes next to the source file, the terms into the
    destination directory. In markdown_paths the source entry is replaced
    by the introduction followed by the term files, in glossary order.

    Args:
        config: Splitter configuration
        source: Glossary path as listed in markdown_paths
        destination: Directory for the term files, relative to the root

    Returns:
        SplitResult: Written paths, skipped sections and the new markdown_paths

    Raises:
        StorageError: On any failed read or write
        ManifestFormatError: If the manifest is unusable
        AnchorNotFoundError: If source is not in markdown_paths
        MalformedGlossaryError: In strict mode, for a section without label
        SlugCollisionError: Under the error collision policy
    """
    destination_path = config.resolve(destination)
    try:
        os.makedirs(destination_path, exist_ok=True)
    except OSError as e:
        raise StorageError(f"Failed to create directory {destination_path}: {str(e)}") from e

    manifest = load_manifest(config.manifest_path, config.encoding)
    paths = get_markdown_paths(manifest)
    locate_anchor(paths, source)

    source_path = config.resolve(source)
    text = read_text(source_path, config.encoding)

    intro, sections = parse_glossary(text, config.delimiter)
    labeled = []
    skipped = []
    for section in sections:
        if section.metadata["term"] is not None:
            labeled.append(section)
            continue
        preview = section.page_content[:40].splitlines()[0] if section.page_content else ""
        if config.strict:
            raise MalformedGlossaryError(
                f"Section {section.metadata['index'] + 1} has no term label: '{preview}'"
            )
        logger.warning(f"Skipping section {section.metadata['index'] + 1} without term label: '{preview}'")
        skipped.append(section)

    filenames = assign_filenames([s.metadata["term"] for s in labeled], config.on_collision)

    fix_glossary_file(source_path, config.delimiter, config.encoding)

    intro_entry = to_manifest_path(os.path.dirname(source), config.intro_filename)
    write_text(intro, config.resolve(intro_entry), config.encoding)

    term_entries = []
    for section, filename in zip(labeled, filenames):
        entry = to_manifest_path(destination, filename)
        write_text(config.delimiter + section.page_content, config.resolve(entry), config.encoding)
        logger.info(f"{filename} created")
        term_entries.append(entry)

    new_paths = splice_paths(paths, source, [intro_entry] + term_entries)
    _first_spec(manifest)["markdown_paths"] = new_paths
    save_manifest(manifest, config.manifest_path, config.encoding)
    logger.info(f"Splitting done: {len(term_entries)} term files, {len(skipped)} sections skipped")

    return SplitResult(
        intro_path=intro_entry,
        term_paths=term_entries,
        skipped_sections=skipped,
        markdown_paths=new_paths,
    )


def run(config: SplitterConfig, source: str, destination: str, confirmed: bool) -> Optional[SplitResult]:
    """
    Gate, back up and split

    Returns:
        Optional[SplitResult]: None when the operator did not confirm
    """
    if not confirmed:
        logger.info("Operation canceled")
        return None
    check_preconditions(config, source, destination)
    ensure_restore_point(config)
    return split(config, source, destination)
