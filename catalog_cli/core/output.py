"""
Output formatting for CLI operations.
"""

import csv
import json
import sys
from io import StringIO
from typing import Any, Dict, List, TextIO


class OutputFormatter:
    """
    Format output for CLI operations in various formats.

    Every ``output_*`` method returns the formatted string; ``write`` prints it.
    CSV falls back to JSON for results that are not tabular (merge, info).
    """

    def __init__(self, format: str = 'text', file: TextIO = None):
        """
        Initialize output formatter.

        Args:
            format: Output format ('text', 'json', 'csv')
            file: Output file (default: sys.stdout)
        """
        self.format = format.lower()
        self.file = file or sys.stdout

    def _json(self, data: Any) -> str:
        return json.dumps(data, indent=2, ensure_ascii=False)

    def _csv(self, fieldnames: List[str], rows: List[Dict[str, Any]]) -> str:
        output = StringIO()
        writer = csv.DictWriter(output, fieldnames=fieldnames, extrasaction='ignore')
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
        return output.getvalue()

    # ----------------------------------------------------------------
    # Matches for a single query
    # ----------------------------------------------------------------

    def output_matches(self, matches: List, entity_type: str, query: str = '') -> str:
        """
        Format the result of a find-duplicates query.

        Args:
            matches: List of Match, best first
            entity_type: Entity type that was searched
            query: Description of the query for the text header
        """
        rows = [m.to_dict() for m in matches]
        if self.format == 'json':
            return self._json({'entity_type': entity_type, 'count': len(rows), 'matches': rows})
        elif self.format == 'csv':
            return self._csv(['id', 'name', 'author', 'isbn13', 'score', 'match_type'], rows)

        lines = [f"Found {len(rows)} possible {entity_type} duplicates" +
                 (f" of {query}" if query else "")]
        lines.append("=" * 60)
        for row in rows:
            lines.append(f"  [{row['id']}] {row['name']}  {row['score']}% ({row['match_type']})")
            if row.get('author'):
                lines.append(f"          by {row['author']}")
            if row.get('isbn13'):
                lines.append(f"          isbn13: {row['isbn13']}")
        return '\n'.join(lines)

    # ----------------------------------------------------------------
    # Catalog-wide scan
    # ----------------------------------------------------------------

    def output_scan(self, result) -> str:
        """Format a ScanResult."""
        if self.format == 'json':
            return self._json(result.to_dict())
        elif self.format == 'csv':
            return self._scan_csv(result)
        return self._scan_text(result)

    def _scan_text(self, result) -> str:
        lines = []
        lines.append(f"Found {len(result.groups)} duplicate {result.entity_type} groups "
                     f"in {result.entities_scanned} entities")
        lines.append(f"Matching pairs: {len(result.pairs)}")
        if result.ignored_skipped:
            lines.append(f"Ignored pairs skipped: {result.ignored_skipped}")
        lines.append("=" * 60)

        for group in result.groups:
            lines.append(f"\nGroup {group.group_id} ({len(group)} entities, "
                         f"{group.match_type}, {group.score}%):")
            lines.append("-" * 40)
            for entity in group.entities:
                lines.append(f"  [{entity['id']}] {entity['name']}")
                if entity.get('author'):
                    lines.append(f"          by {entity['author']}")

        return '\n'.join(lines)

    def _scan_csv(self, result) -> str:
        rows = []
        for group in result.groups:
            for entity in group.entities:
                rows.append({
                    'group_id': group.group_id,
                    'match_type': group.match_type,
                    'score': group.score,
                    'id': entity['id'],
                    'name': entity.get('name', ''),
                    'author': entity.get('author', ''),
                    'isbn13': entity.get('isbn13', ''),
                })
        return self._csv(['group_id', 'match_type', 'score', 'id', 'name', 'author', 'isbn13'], rows)

    def output_summary(self, summary: Dict[str, Any]) -> str:
        """Format summary statistics of a scan."""
        if self.format == 'json':
            return self._json(summary)
        elif self.format == 'csv':
            return self._csv(list(summary), [summary])

        lines = ["Duplicate Search Summary", "=" * 40]
        lines.append(f"Total duplicate groups: {summary['total_groups']}")
        lines.append(f"Total entities in groups: {summary['total_entities']}")
        lines.append(f"Duplicates to remove:   {summary['duplicates_to_remove']}")
        lines.append(f"Largest group size:     {summary['largest_group']}")
        lines.append(f"Average group size:     {summary['avg_group_size']:.1f}")
        lines.append(f"Ignored pairs skipped:  {summary['ignored_skipped']}")
        return '\n'.join(lines)

    # ----------------------------------------------------------------
    # Ignore list, merge and info
    # ----------------------------------------------------------------

    def output_ignored(self, rows: List[Dict[str, Any]], entity_type: str) -> str:
        """Format the ignored pairs of one entity type."""
        fieldnames = ['entity_type', 'entity_id1', 'entity_id2', 'created_at', 'created_by']
        if self.format == 'json':
            return self._json({'entity_type': entity_type, 'count': len(rows),
                               'pairs': [{k: r[k] for k in fieldnames} for r in rows]})
        elif self.format == 'csv':
            return self._csv(fieldnames, rows)

        lines = [f"{len(rows)} ignored {entity_type} pairs", "=" * 40]
        for row in rows:
            by = f" by {row['created_by']}" if row.get('created_by') is not None else ""
            lines.append(f"  {row['entity_id1']} <-> {row['entity_id2']}  ({row['created_at']}{by})")
        return '\n'.join(lines)

    def output_status(self, message: str, **data) -> str:
        """Format a one-line success message (ignore, unignore, init)."""
        if self.format in ('json', 'csv'):
            return self._json({'success': True, **data})
        return message

    def output_merge(self, result, entity_type: str, primary_id: int) -> str:
        data = result.to_dict()
        if self.format in ('json', 'csv'):
            return self._json({**data, 'entity_type': entity_type, 'primary_id': primary_id})
        return (f"Merged {result.merged_count} {entity_type} entities into "
                f"[{primary_id}] {result.name}")

    def output_info(self, info: Dict[str, Any]) -> str:
        if self.format in ('json', 'csv'):
            return self._json(info)

        lines = ["Catalog Info", "=" * 40, f"Path: {info['database']}"]
        for entity_type, count in info['counts'].items():
            lines.append(f"  {entity_type + ':':<12} {count}")
        lines.append("Ignored pairs:")
        for entity_type, count in info['ignored_pairs'].items():
            lines.append(f"  {entity_type + ':':<12} {count}")
        return '\n'.join(lines)

    def output_error(self, error) -> str:
        """Format a CatalogError; JSON output carries its reason code."""
        if self.format == 'json':
            return self._json(error.to_dict())
        return f"Error: {error}"

    def write(self, content: str):
        """Write content to output file."""
        print(content, file=self.file)
