"""Test suite for package_patterns.py"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))
from package_errors import EmptySelectionError, PatternSyntaxError
from package_patterns import (
    build_rule_stack,
    compile_rule,
    is_selected,
    merge_patterns,
    resolve_file_paths,
)

HANDLER_FILE = 'src/function/handler.js'
UTILS_FILE = 'src/utils/utils.js'
DOTS_FILE = 'src/dots/[...file].js'
NESTED_TREE = [DOTS_FILE, HANDLER_FILE, UTILS_FILE]

FLAT_TREE = ['dots/[...file].js', 'handler.js', 'utils.js']

FIXTURE_TREE = [
    '.gitignore',
    'dir1/subdir1/index.js',
    'dir1/subdir2/index.js',
    'dir1/subdir2/subsubdir1/index.js',
    'dir1/subdir2/subsubdir2/index.js',
    'dir1/subdir3/index.js',
    'dir1/subdir4/index.js',
    'dir3/index.js',
    'index.js',
]


class TestLayeredResolution:
    """Test exclude/include merging with negations"""

    def test_exclude_all_include_one(self):
        """Test that an include re-adds a single file after excluding everything"""
        result = resolve_file_paths(NESTED_TREE, exclude=['**'], include=[HANDLER_FILE])
        assert result == [HANDLER_FILE]

    def test_negation_in_excludes_reincludes(self):
        """Test that `!` in the exclude list re-includes a file"""
        result = resolve_file_paths(NESTED_TREE, exclude=['**', f'!{UTILS_FILE}'], include=[HANDLER_FILE])
        assert sorted(result) == sorted([HANDLER_FILE, UTILS_FILE])

    def test_negation_in_includes_excludes(self):
        """Test that `!` in the include list removes a file from the baseline"""
        result = resolve_file_paths(NESTED_TREE, exclude=[], include=[f'!{UTILS_FILE}'])
        assert sorted(result) == sorted([DOTS_FILE, HANDLER_FILE])

    def test_basename_patterns_on_flat_tree(self):
        """Test the same three cases with slash-less patterns"""
        assert resolve_file_paths(FLAT_TREE, ['**'], ['handler.js']) == ['handler.js']
        assert set(resolve_file_paths(FLAT_TREE, ['**', '!utils.js'], ['handler.js'])) == {'handler.js', 'utils.js'}
        assert resolve_file_paths(FLAT_TREE, [], ['!utils.js']) == ['dots/[...file].js', 'handler.js']

    def test_no_patterns_selects_everything(self):
        """Test that an empty rule stack keeps every candidate"""
        assert resolve_file_paths(NESTED_TREE) == NESTED_TREE

    def test_include_only_keeps_baseline(self):
        """Test that bare includes never narrow the selection"""
        assert resolve_file_paths(NESTED_TREE, include=[HANDLER_FILE]) == NESTED_TREE

    def test_service_exclude_with_negated_directory(self):
        """Test excluding a tree but keeping one of its subdirectories"""
        result = resolve_file_paths(FIXTURE_TREE, exclude=['dir1/**', '!dir1/subdir3/**'])
        assert 'dir1/subdir1/index.js' not in result
        assert 'dir1/subdir3/index.js' in result
        assert 'dir3/index.js' in result

    def test_include_directory_with_negated_subdirectory(self):
        """Test that a negated include drops a subdirectory of a re-included tree"""
        result = resolve_file_paths(
            FIXTURE_TREE,
            exclude=['dir1/**', '!dir1/subdir3/**'],
            include=['dir1/subdir2/**', '!dir1/subdir2/subsubdir1'],
        )
        assert 'dir1/subdir2/index.js' in result
        assert 'dir1/subdir2/subsubdir1/index.js' not in result
        assert 'dir1/subdir2/subsubdir2/index.js' in result
        assert 'dir1/subdir4/index.js' not in result

    def test_unit_patterns_override_service_patterns(self):
        """Test that unit patterns appended after service patterns win"""
        exclude = merge_patterns(['dir1/**'], 'dir3/**')
        include = merge_patterns(['dir1/subdir2/**'], 'dir1/subdir4/**')
        result = resolve_file_paths(FIXTURE_TREE, exclude, include)
        assert 'dir1/subdir4/index.js' in result
        assert 'dir3/index.js' not in result

    @pytest.mark.parametrize('exclude,include', [
        (['**', '!handler.js'], []),
        (['**'], ['handler.js']),
        (['utils.js', 'dots/**'], []),
        ([], ['!utils.js', '!dots/**']),
    ])
    def test_last_match_wins_regardless_of_list(self, exclude, include):
        """Test that equivalent rules yield the same selection from either list"""
        assert resolve_file_paths(FLAT_TREE, exclude, include) == ['handler.js']

    def test_later_rule_wins_over_earlier(self):
        """Test that rule order, not rule count, decides"""
        exclude = ['handler.js', '!handler.js', 'handler.js', '!handler.js']
        assert 'handler.js' in resolve_file_paths(FLAT_TREE, exclude, [])
        assert 'handler.js' not in resolve_file_paths(FLAT_TREE, exclude[:3], [])

    def test_idempotent(self):
        """Test that resolving twice yields the same ordered output"""
        first = resolve_file_paths(FIXTURE_TREE, ['dir1/**'], ['dir1/subdir2/**'])
        second = resolve_file_paths(FIXTURE_TREE, ['dir1/**'], ['dir1/subdir2/**'])
        assert first == second

    def test_duplicates_removed_in_candidate_order(self):
        """Test that duplicate candidates collapse to the first occurrence"""
        assert resolve_file_paths(['b.js', 'a.js', 'b.js']) == ['b.js', 'a.js']


class TestPatternSyntax:
    """Test glob semantics of individual rules"""

    def test_slashless_pattern_matches_at_any_depth(self):
        """Test basename matching for patterns without a slash"""
        rule = compile_rule('*.pyc', include=False)
        assert rule.matches('a.pyc')
        assert rule.matches('pkg/sub/a.pyc')
        assert not rule.matches('pkg/a.py')

    def test_slashless_pattern_matches_directories(self):
        """Test that a directory name excludes everything below it"""
        rule = compile_rule('node_modules', include=False)
        assert rule.matches('node_modules/left-pad/index.js')
        assert rule.matches('lib/node_modules/x.js')
        assert not rule.matches('lib/node_modules_backup.js')

    def test_slash_pattern_is_anchored(self):
        """Test that patterns containing a slash are anchored at the root"""
        rule = compile_rule('src/*.js', include=True)
        assert rule.matches('src/a.js')
        assert not rule.matches('lib/src/a.js')
        assert not rule.matches('src/nested/b.js')

    def test_double_star_spans_directories(self):
        """Test that ** matches any number of segments"""
        rule = compile_rule('src/**/test_*.py', include=False)
        assert rule.matches('src/test_a.py')
        assert rule.matches('src/a/b/test_c.py')
        assert not rule.matches('test_a.py')

    def test_leading_dot_slash_and_trailing_slash(self):
        """Test ./ prefixes and directory-only patterns"""
        assert compile_rule('./custom-plugins', include=False).matches('custom-plugins/index.js')
        build_dir = compile_rule('build/', include=False)
        assert build_dir.matches('build/out.js')
        assert not build_dir.matches('build')

    def test_wildcards_match_dotfiles(self):
        """Test that hidden files are not special"""
        assert compile_rule('*', include=False).matches('.env')
        assert compile_rule('**', include=False).matches('.git/config')

    def test_bracket_class(self):
        """Test bracket character classes"""
        rule = compile_rule('[ab].js', include=True)
        assert rule.matches('a.js')
        assert not rule.matches('c.js')

    @pytest.mark.parametrize('pattern', ['', '!', '/', './', '../secrets', 'a/../b',
                                         '[z-a].js', 'src/[!9-0]*.py'])
    def test_malformed_patterns_rejected(self, pattern):
        """Test that malformed patterns raise PatternSyntaxError eagerly"""
        with pytest.raises(PatternSyntaxError) as exc_info:
            build_rule_stack(exclude=[pattern], unit='fn')
        assert exc_info.value.unit == 'fn'

    def test_bracket_expressions_accepted(self):
        """Test ordinary ranges compile and an unclosed bracket is literal"""
        rule = compile_rule('[a-c]*.js', include=True)
        assert rule.matches('b.js')
        assert not rule.matches('d.js')
        assert compile_rule('[-z].js', include=True).matches('-.js')
        assert compile_rule('a[z-', include=True).matches('a[z-')

    def test_pattern_error_raised_before_selection(self):
        """Test that a bad pattern is reported even with no candidates"""
        with pytest.raises(PatternSyntaxError):
            resolve_file_paths([], exclude=['../x'])


class TestRuleStack:
    """Test build_rule_stack and is_selected"""

    def test_stack_order_and_polarity(self):
        """Test exclude rules come first and include polarity is inverted"""
        rules = build_rule_stack(['a', '!b'], ['c', '!d'])
        assert [r.pattern for r in rules] == ['a', 'b', 'c', 'd']
        assert [r.include for r in rules] == [False, True, True, False]

    def test_unmatched_path_selected(self):
        """Test the select-everything baseline"""
        rules = build_rule_stack(['other.js'], [])
        assert is_selected('handler.js', rules)
        assert not is_selected('other.js', rules)


class TestMergePatterns:
    """Test merge_patterns"""

    def test_merge_orders_scopes(self):
        """Test scopes are concatenated outermost first"""
        assert merge_patterns(['a'], None, 'b', ['c', 'd']) == ['a', 'b', 'c', 'd']

    def test_merge_rejects_non_strings(self):
        """Test that non-string entries are rejected"""
        with pytest.raises(PatternSyntaxError):
            merge_patterns(['a', 3])


class TestEmptySelection:
    """Test that empty selections are errors"""

    def test_no_candidates(self):
        """Test empty candidate set"""
        with pytest.raises(EmptySelectionError):
            resolve_file_paths([], unit='fn', root='/tmp/svc')

    def test_everything_excluded(self):
        """Test patterns that leave nothing"""
        with pytest.raises(EmptySelectionError) as exc_info:
            resolve_file_paths(FLAT_TREE, exclude=['**'], unit='fn', root='/tmp/svc')
        assert 'unit=fn' in str(exc_info.value)
        assert exc_info.value.root == '/tmp/svc'
