import logging
import unittest
from unittest.mock import Mock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

logging.disable(logging.CRITICAL)


def _memory_session():
    from tasklink.models.base import init_db

    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    init_db(engine)
    return sessionmaker(bind=engine, autoflush=False)()


class HeuristicIdentityTests(unittest.TestCase):
    def test_strips_configured_suffix(self):
        from tasklink.services.user_mapping import heuristic_tracker_identity

        self.assertEqual(heuristic_tracker_identity("bob@Corp.Example", "@corp.example"), "bob")

    def test_falls_back_to_local_part_then_raw_value(self):
        from tasklink.services.user_mapping import heuristic_tracker_identity

        self.assertEqual(heuristic_tracker_identity("carol@elsewhere.org", "@corp.example"), "carol")
        self.assertEqual(heuristic_tracker_identity("  dave  "), "dave")
        self.assertIsNone(heuristic_tracker_identity("   "))
        self.assertIsNone(heuristic_tracker_identity(None))


class UserMappingResolverTests(unittest.TestCase):
    def setUp(self):
        self.db = _memory_session()

    def tearDown(self):
        self.db.close()

    def test_directory_email_is_resolved_and_cached(self):
        from tasklink.services.task_client import DirectoryUser
        from tasklink.services.user_mapping import UserMappingResolver

        directory = Mock()
        directory.get_user.return_value = DirectoryUser(
            user_id="ou_alice", email="alice@corp.example", display_name="Alice"
        )
        resolver = UserMappingResolver(self.db, directory)

        self.assertEqual(resolver.resolve("ou_alice"), "alice")
        cached = resolver.get_cached("ou_alice")
        self.assertIsNotNone(cached)
        self.assertEqual(cached.tracker_identity, "alice")
        self.assertEqual(cached.display_name, "Alice")

        # Second resolution is served from the cache.
        self.assertEqual(resolver.resolve("ou_alice"), "alice")
        self.assertEqual(directory.get_user.call_count, 1)

    def test_directory_failure_uses_heuristic_without_caching(self):
        from tasklink.services.task_client import TaskSystemError
        from tasklink.services.user_mapping import UserMappingResolver

        directory = Mock()
        directory.get_user.side_effect = TaskSystemError("boom", status_code=500)
        resolver = UserMappingResolver(self.db, directory, email_suffix="@corp.example")

        self.assertEqual(resolver.resolve("erin@corp.example"), "erin")
        self.assertIsNone(resolver.get_cached("erin@corp.example"))

    def test_directory_user_without_email_uses_heuristic(self):
        from tasklink.services.task_client import DirectoryUser
        from tasklink.services.user_mapping import UserMappingResolver

        directory = Mock()
        directory.get_user.return_value = DirectoryUser(user_id="ou_x")
        resolver = UserMappingResolver(self.db, directory)

        self.assertEqual(resolver.resolve("ou_x"), "ou_x")
        self.assertIsNone(resolver.get_cached("ou_x"))

    def test_explicit_mapping_wins_and_reverse_lookup(self):
        from tasklink.services.user_mapping import UserMappingResolver

        directory = Mock()
        resolver = UserMappingResolver(self.db, directory)
        resolver.save_mapping("ou_frank", "frank.gl")

        self.assertEqual(resolver.resolve("ou_frank"), "frank.gl")
        directory.get_user.assert_not_called()
        self.assertEqual(resolver.reverse_lookup("frank.gl"), "ou_frank")
        self.assertIsNone(resolver.reverse_lookup("nobody"))

    def test_resolve_many_only_asks_directory_about_misses(self):
        from unittest.mock import call

        from tasklink.services.task_client import DirectoryUser
        from tasklink.services.user_mapping import UserMappingResolver

        directory = Mock()
        directory.get_user.side_effect = lambda user_id: DirectoryUser(
            user_id=user_id, email=f"{user_id[3:]}@corp.example"
        )
        resolver = UserMappingResolver(self.db, directory)
        resolver.save_mapping("ou_1", "one")

        out = resolver.resolve_many(["ou_1", "ou_two", "ou_two", "ou_three"])

        self.assertEqual(out, {"ou_1": "one", "ou_two": "two", "ou_three": "three"})
        self.assertEqual(directory.get_user.call_args_list, [call("ou_two"), call("ou_three")])
        # Directory hits are now cached, so a second batch needs no lookups.
        resolver.resolve_many(["ou_two", "ou_three"])
        self.assertEqual(directory.get_user.call_count, 2)

    def test_resolve_many_deduplicates(self):
        from tasklink.services.user_mapping import UserMappingResolver

        resolver = UserMappingResolver(self.db)
        resolver.save_mapping("ou_1", "one")

        out = resolver.resolve_many(["ou_1", "", "two@x.org", "ou_1"])
        self.assertEqual(out, {"ou_1": "one", "two@x.org": "two"})


if __name__ == "__main__":
    unittest.main()
