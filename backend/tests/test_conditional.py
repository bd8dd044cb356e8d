"""
条件请求（304）判断测试
"""

from email.utils import parsedate_to_datetime

from image_transform.conditional import http_date, is_not_modified, not_modified_last_modified

ETAG = '"20-abcdefghijklmnopqrstuvwxyz0"'


class TestIsNotModified:

    def test_exact_match(self):
        assert is_not_modified(ETAG, ETAG) is True

    def test_missing_header(self):
        assert is_not_modified(None, ETAG) is False

    def test_no_partial_or_weak_matching(self):
        """测试：只接受完全相同的字符串"""
        assert is_not_modified("W/" + ETAG, ETAG) is False
        assert is_not_modified(ETAG.strip('"'), ETAG) is False
        assert is_not_modified(f"{ETAG}, \"other\"", ETAG) is False
        assert is_not_modified("*", ETAG) is False


class TestLastModified:

    def test_echoes_if_modified_since(self):
        value = "Tue, 01 Jan 2019 00:00:00 GMT"
        assert not_modified_last_modified(value) == value

    def test_falls_back_to_now(self):
        value = not_modified_last_modified(None)
        assert value.endswith(" GMT")
        parsedate_to_datetime(value)

    def test_http_date_format(self):
        assert http_date(0) == "Thu, 01 Jan 1970 00:00:00 GMT"
