#!/usr/bin/env python3
# CUI // SP-CTI
"""Tests for patterngate.safety.scope_lock: inference and first-match-wins checks."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from patterngate.safety.decision_log import create_decision
from patterngate.safety.scope_lock import (
    ALLOW_REASON,
    SENSITIVE_FILES,
    SENSITIVE_PATTERNS,
    ScopeLock,
    check_action,
    check_contradiction,
    create_scope_lock,
    format_for_display,
    infer_allowed_actions,
    infer_directories,
    infer_size_caps,
    record_violation,
)


class TestInference:
    """Verb, noun and size heuristics."""

    def test_create_and_modify_always_allowed(self):
        assert infer_allowed_actions("rename a variable") == ["create-file", "modify-file"]

    def test_verbs_grant_actions(self):
        actions = infer_allowed_actions("install zod and run the linter, then update config")
        assert actions == ["create-file", "modify-file", "add-dependency", "run-command", "modify-config"]

    def test_delete_verbs(self):
        assert "delete-file" in infer_allowed_actions("clean up old files")

    def test_nouns_grant_directories(self):
        assert infer_directories("add a component and an api route") == [
            "src/components/", "src/app/api/",
        ]

    def test_test_noun(self):
        assert infer_directories("write tests") == ["tests/", "__tests__/"]

    def test_no_nouns(self):
        assert infer_directories("rename a variable") == []

    @pytest.mark.parametrize("request_text,caps", [
        ("fix the typo", (2, 3)),
        ("build the billing feature", (20, 30)),
        ("rename a variable", (10, 15)),
    ])
    def test_size_caps(self, request_text, caps):
        assert infer_size_caps(request_text) == caps


class TestCreateScopeLock:

    def test_inferred_lock(self):
        lock = create_scope_lock("add a button component")
        assert lock.allowed_directories == ["src/components/"]
        assert lock.allowed_actions == ["create-file", "modify-file"]
        assert (lock.max_new_files, lock.max_modified_files) == (10, 15)
        assert lock.can_delete_files is False
        assert lock.can_modify_dependencies is False
        assert lock.can_modify_schema is False
        assert lock.is_active is True
        assert lock.violations == []

    def test_capability_flags(self):
        lock = create_scope_lock("remove the old migration and install a package")
        assert lock.can_delete_files is True
        assert lock.can_modify_dependencies is True
        assert lock.can_modify_schema is True

    def test_sensitive_sets_always_present(self):
        lock = create_scope_lock("x", {"forbidden_files": ["secrets.json"]})
        assert lock.forbidden_files == ["secrets.json"] + list(SENSITIVE_FILES)
        assert lock.forbidden_patterns == list(SENSITIVE_PATTERNS)

    def test_declared_values_replace_inference(self):
        lock = create_scope_lock("delete everything", {
            "allowed_actions": ["modify-file"],
            "can_delete_files": False,
            "max_new_files": 0,
        })
        assert lock.allowed_actions == ["modify-file"]
        assert lock.can_delete_files is False
        assert lock.max_new_files == 0

    def test_declared_directories_extended_by_inference(self):
        lock = create_scope_lock("add a component", {"allowed_directories": ["src/ui/"]})
        assert lock.allowed_directories == ["src/ui/", "src/components/"]

    def test_unknown_declared_action(self):
        with pytest.raises(ValueError, match="Unknown action types"):
            create_scope_lock("x", {"allowed_actions": ["format-disk"]})

    def test_dict_round_trip_keeps_violations(self):
        lock = create_scope_lock("add a component")
        record_violation(lock, check_action(lock, "delete-file", "src/components/A.tsx").violation)
        restored = ScopeLock.from_dict(lock.to_dict())
        assert restored == lock


class TestCheckAction:
    """Deny rules are evaluated in a fixed order."""

    @pytest.fixture
    def lock(self):
        return create_scope_lock("add a button component")

    def test_allows_create_in_allowed_directory(self, lock):
        check = check_action(lock, "create-file", "src/components/Button.tsx")
        assert check.allowed is True
        assert check.reason == ALLOW_REASON
        assert check.violation is None

    def test_forbidden_pattern_has_top_precedence(self, lock):
        lock.allowed_directories.append("node_modules/")
        check = check_action(lock, "create-file", "node_modules/pkg/index.js")
        assert check.allowed is False
        assert check.reason == "File matches forbidden pattern: node_modules/"

    def test_forbidden_pattern_beats_delete_rule(self, lock):
        check = check_action(lock, "delete-file", ".git/config")
        assert "forbidden pattern" in check.reason

    def test_forbidden_file_suffix(self, lock):
        check = check_action(lock, "modify-file", "apps/web/.env")
        assert check.reason == "File is explicitly forbidden: .env"
        assert check.violation.blocked is True
        assert check.violation.target_file == "apps/web/.env"

    def test_delete_needs_capability(self, lock):
        assert check_action(lock, "delete-file", "src/components/Old.tsx").reason == \
            "File deletion not allowed for this task"

    def test_delete_with_capability(self):
        lock = create_scope_lock("delete the old component")
        assert check_action(lock, "delete-file", "src/components/Old.tsx").allowed is True

    def test_dependency_change_targets_manifest(self, lock):
        check = check_action(lock, "add-dependency", "")
        assert check.violation.target_file == "package.json"
        assert "Dependency" in check.reason

    def test_schema_target_needs_capability(self, lock):
        check = check_action(lock, "modify-file", "src/components/schema.ts")
        assert check.reason == "Schema modifications not allowed for this task"

    def test_action_type_membership(self, lock):
        check = check_action(lock, "run-command", "src/components/Button.tsx")
        assert check.reason == 'Action type "run-command" not in allowed actions'

    def test_directory_containment(self, lock):
        check = check_action(lock, "create-file", "src/lib/util.ts")
        assert check.allowed is False
        assert "src/components/" in check.reason

    def test_no_directories_means_anywhere(self):
        lock = create_scope_lock("rename a variable")
        assert check_action(lock, "modify-file", "anywhere/at/all.py").allowed is True

    def test_command_without_target_skips_directory_check(self):
        lock = create_scope_lock("build the component and run tests")
        assert lock.allowed_directories
        check = check_action(lock, "run-command", None)
        assert check.allowed is True
        assert check.violation is None

    def test_allowed_files_are_exclusive(self):
        lock = create_scope_lock("tweak it", {"allowed_files": ["src/a.ts"]})
        check = check_action(lock, "modify-file", "src/other/secret_area.ts")
        assert check.allowed is False
        assert check.reason == "File not in allowed files: src/a.ts"
        assert check_action(lock, "modify-file", "src/a.ts").allowed is True
        assert check_action(lock, "modify-file", "apps/web/src/a.ts").allowed is True
        assert check_action(lock, "modify-file", "src/data.ts").allowed is False

    def test_allowed_file_outside_allowed_directories(self):
        lock = create_scope_lock("add a button component", {"allowed_files": ["src/lib/theme.ts"]})
        assert check_action(lock, "modify-file", "src/lib/theme.ts").allowed is True
        assert check_action(lock, "create-file", "src/components/Button.tsx").allowed is False

    def test_allowed_files_still_respect_forbidden_files(self):
        lock = create_scope_lock("tweak it", {"allowed_files": [".env"]})
        assert check_action(lock, "modify-file", ".env").reason == "File is explicitly forbidden: .env"

    def test_check_does_not_record(self, lock):
        check_action(lock, "delete-file", "x")
        assert lock.violations == []

    def test_violations_accumulate(self, lock):
        for target in ("a", "b"):
            record_violation(lock, check_action(lock, "delete-file", target).violation)
        assert [v.target_file for v in lock.violations] == ["a", "b"]


class TestScopeContradiction:

    @pytest.mark.parametrize("impact,severity", [
        ("critical", "critical"), ("high", "error"), ("medium", "warning"), ("low", "warning"),
    ])
    def test_severity_follows_impact(self, impact, severity):
        d = create_decision("Keep sessions server-side", "security", "x", impact=impact)
        found = check_contradiction("modify-file on src/lib/local-cache.ts", [d])
        assert found.severity == severity
        assert found.to_dict()["resolution"]["type"] == "cancel"

    def test_none(self):
        assert check_contradiction("create-file on a.ts", []) is None


def test_format_for_display():
    lock = create_scope_lock("add a button component")
    record_violation(lock, check_action(lock, "delete-file", "src/components/A.tsx").violation)
    text = format_for_display(lock)
    assert text.startswith("## SCOPE LOCK ACTIVE")
    assert "**Task:** add a button component" in text
    assert "- Directories: src/components/" in text
    assert "### Violations" in text


def test_format_for_display_any_directory():
    assert "- Directories: Any" in format_for_display(create_scope_lock("rename a variable"))
