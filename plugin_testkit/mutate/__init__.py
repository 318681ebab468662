"""
Source mutation: anchored insert/replace/uncomment and bundle annotation
stripping.
"""

from plugin_testkit.mutate.engine import (
    MutationJournal,
    MutationMode,
    MutationSpec,
    apply_mutations,
    insert_code,
    replace_in_file,
    uncomment_code,
)

__all__ = [
    "MutationJournal",
    "MutationMode",
    "MutationSpec",
    "apply_mutations",
    "insert_code",
    "replace_in_file",
    "uncomment_code",
]
