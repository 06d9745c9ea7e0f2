"""
Integration tests for UserFieldDataRepository.

Run with: CONVENE_ENV=test pytest src/convene/custom_field/user_data_test.py -v
"""

from convene.custom_field.user_data import field_data_key


class TestUserFieldData:
    """Tests for UserFieldDataRepository"""

    def test_no_data_yet(self, user_data_repo):
        assert user_data_repo.get_user_data(10) == {}
        assert user_data_repo.get_user_field_value(10, 3) is None

    def test_set_and_get_value(self, user_data_repo):
        assert user_data_repo.set_user_field_value(10, 3, "A-1234") is True

        assert user_data_repo.get_user_field_value(10, 3) == "A-1234"
        assert user_data_repo.get_user_data(10) == {"field_3": "A-1234"}

    def test_save_merges(self, user_data_repo, store):
        user_data_repo.save_user_data(10, {"field_1": "x", "field_2": "y"})
        user_data_repo.save_user_data(10, {"field_2": "z", "field_3": ["a", "b"]})

        assert user_data_repo.get_user_data(10) == {"field_1": "x", "field_2": "z", "field_3": ["a", "b"]}
        rows = store.get_var("SELECT COUNT(*) FROM user_field_data WHERE user_id = %s", (10,))
        assert rows == 1

    def test_users_are_isolated(self, user_data_repo):
        user_data_repo.set_user_field_value(10, 1, "mine")
        user_data_repo.set_user_field_value(11, 1, "theirs")

        assert user_data_repo.get_user_field_value(10, 1) == "mine"

    def test_delete(self, user_data_repo):
        user_data_repo.set_user_field_value(10, 1, "x")

        assert user_data_repo.delete_user_data(10) is True
        assert user_data_repo.get_user_data(10) == {}

    def test_corrupt_blob_reads_as_empty(self, user_data_repo, store):
        store.insert("user_field_data", {"user_id": 10, "data": "{not json"})

        assert user_data_repo.get_user_data(10) == {}

    def test_field_data_key(self):
        assert field_data_key(42) == "field_42"
