"""Test path classification and exclusion rules."""

import pytest

from page_analytics.settings import AnalyticsSettings, AssetPolicy, build_settings
from page_analytics.utils.path_classifier import (
    PathClassifier,
    UserContext,
    compile_patterns,
    is_asset_path,
    match_path,
    normalize_path,
)


@pytest.fixture
def classifier() -> PathClassifier:
    settings = AnalyticsSettings(excluded_paths="/user/login\n/jsonapi/*")
    return PathClassifier(settings)


class TestNormalizePath:
    def test_adds_leading_slash(self):
        assert normalize_path("node/1") == "/node/1"

    def test_strips_trailing_slash(self):
        assert normalize_path("/about-us/") == "/about-us"

    def test_root_and_empty(self):
        assert normalize_path("/") == "/"
        assert normalize_path("") == "/"
        assert normalize_path(None) == "/"

    def test_drops_query_and_fragment(self):
        assert normalize_path("/about-us?utm_source=mail#top") == "/about-us"
        assert normalize_path("/?page=2") == "/"

    def test_full_url_reduced_to_path(self):
        assert normalize_path("https://example.com/blog/post-1/?ref=home") == "/blog/post-1"


class TestPatterns:
    def test_wildcard_spans_segments(self):
        assert match_path("/jsonapi/node/article/1", "/jsonapi/*")

    def test_exact_line_is_anchored(self):
        assert match_path("/user/login", "/user/login")
        assert not match_path("/user/login/extra", "/user/login")
        assert not match_path("/x/user/login", "/user/login")

    def test_front_token_matches_root_only(self):
        assert match_path("/", "<front>")
        assert not match_path("/node", "<front>")

    def test_blank_lines_ignored(self):
        assert compile_patterns("\n  \n") is None
        assert not match_path("/anything", "\n\n")

    def test_regex_characters_are_literal(self):
        assert match_path("/a.b", "/a.b")
        assert not match_path("/aXb", "/a.b")

    def test_case_sensitive(self):
        assert not match_path("/User/Login", "/user/login")


class TestAssetPaths:
    def test_any_extension_policy(self):
        assert is_asset_path("/themes/custom/foo/logo.svg")
        assert is_asset_path("/sites/default/files/report.pdf")
        assert not is_asset_path("/about-us")

    def test_images_only_policy(self):
        assert is_asset_path("/files/photo.JPG", AssetPolicy.IMAGES_ONLY)
        assert not is_asset_path("/files/report.pdf", AssetPolicy.IMAGES_ONLY)


class TestClassify:
    """Tests for PathClassifier.classify."""

    def test_admin_paths_rejected(self, classifier: PathClassifier):
        assert classifier.classify("/admin/content") is None
        assert classifier.classify("/admin") is None
        assert classifier.classify("/en/admin/config") is None

    def test_admin_prefix_is_not_admin(self, classifier: PathClassifier):
        assert classifier.classify("/administrator-guide") == "/administrator-guide"

    def test_admin_allowed_when_flag_off(self):
        classifier = PathClassifier(AnalyticsSettings(exclude_admin_paths=False))
        assert classifier.classify("/admin/content") == "/admin/content"

    def test_configured_patterns_rejected(self, classifier: PathClassifier):
        assert classifier.classify("/user/login") is None
        assert classifier.classify("/jsonapi/node/article") is None

    def test_assets_rejected(self, classifier: PathClassifier):
        assert classifier.classify("/themes/custom/foo/logo.svg") is None

    def test_query_value_does_not_look_like_asset(self, classifier: PathClassifier):
        assert classifier.classify("/download?file=report.pdf") == "/download"

    def test_regular_page_accepted(self, classifier: PathClassifier):
        assert classifier.classify("/about-us") == "/about-us"
        assert classifier.classify("/") == "/"

    def test_path_is_normalized(self, classifier: PathClassifier):
        assert classifier.classify("about-us/") == "/about-us"

    def test_long_path_clamped(self, classifier: PathClassifier):
        long_path = "/" + "a" * 400
        result = classifier.classify(long_path)
        assert result is not None
        assert len(result) == 255
        assert result == long_path[:255]

    def test_patterns_see_full_path_before_clamping(self):
        suffix_rule = "*/secret"
        long_path = "/" + "a" * 300 + "/secret"
        classifier = PathClassifier(AnalyticsSettings(excluded_paths=suffix_rule))
        assert classifier.classify(long_path) is None


class TestUserExclusion:
    def test_excluded_role(self):
        classifier = PathClassifier(AnalyticsSettings(excluded_roles=frozenset({"editor"})))
        assert classifier.classify("/about-us", UserContext.authenticated({"editor"})) is None
        assert classifier.classify("/about-us", UserContext.authenticated({"author"})) == "/about-us"
        assert classifier.classify("/about-us", UserContext.anonymous()) == "/about-us"

    def test_authenticated_role_excludes_every_logged_in_user(self):
        classifier = PathClassifier(AnalyticsSettings(excluded_roles=frozenset({"authenticated"})))
        assert classifier.classify("/about-us", UserContext.authenticated()) is None
        assert classifier.classify("/about-us", UserContext.anonymous()) == "/about-us"

    def test_anonymous_role_excludes_visitors(self):
        classifier = PathClassifier(AnalyticsSettings(excluded_roles=frozenset({"anonymous"})))
        assert classifier.classify("/about-us") is None
        assert classifier.classify("/about-us", UserContext.authenticated()) == "/about-us"

    def test_legacy_flag_becomes_authenticated_role(self):
        settings = build_settings(exclude_authenticated_users=True, excluded_roles=["editor"])
        assert settings.excluded_roles == frozenset({"authenticated", "editor"})
        classifier = PathClassifier(settings)
        assert classifier.classify("/about-us", UserContext.authenticated({"subscriber"})) is None

    def test_no_excluded_roles(self, classifier: PathClassifier):
        assert classifier.classify("/about-us", UserContext.authenticated({"administrator"})) == "/about-us"


class TestAdminRoutePredicate:
    def test_predicate_flags_admin_route(self):
        classifier = PathClassifier(AnalyticsSettings(), admin_route_predicate=lambda p: p == "/node/1/edit")
        assert classifier.classify("/node/1/edit") is None
        assert classifier.classify("/node/1") == "/node/1"

    def test_predicate_failure_counts_as_regular_page(self):
        def broken(path):
            raise LookupError("route not found")

        classifier = PathClassifier(AnalyticsSettings(), admin_route_predicate=broken)
        assert classifier.classify("/node/1") == "/node/1"
