import unittest
import sys
import os
from fastapi.testclient import TestClient
sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from client import LiftLogClient
from rest_api import TrainingAPI

class ClientTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = 'client_test.db'
        self.yaml_path = 'client_test.yaml'
        self.api = TrainingAPI(db_path=self.db_path, yaml_path=self.yaml_path)
        self.client = LiftLogClient(
            base_url='http://testserver/', session=TestClient(self.api.app)
        )

    def tearDown(self) -> None:
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)

    def test_health(self) -> None:
        self.assertTrue(self.client.health())

    def test_log_session(self) -> None:
        cat = self.client.add_category('Legs')
        squat = self.client.add_exercise('Squat', cat)
        routine = self.client.create_routine('Leg Day', [squat])
        self.assertEqual(self.client.list_exercises()[0]['name'], 'Squat')

        started = self.client.start_session(routine, user_id='u1')
        token = started['token']
        self.client.update_set(token, 0, 'reps', 5)
        result = self.client.update_set(token, 0, 'weight_kg', 140, exercise_id=squat)
        self.assertEqual(result['new_pr']['weight'], 140)
        summary = self.client.finish_session(token, duration_seconds=900)
        self.assertEqual(summary['total_volume'], 700)

        self.assertEqual(self.client.overview()['total_sessions'], 1)
        self.assertEqual(self.client.streaks()['longest'], 1)
        board = self.client.leaderboard('u1', squat)
        self.assertEqual(board[0]['pr'], 140)

    def test_calculators(self) -> None:
        self.assertEqual(self.client.one_rep_max(100, 1)['estimate'], 100)
        self.assertEqual(len(self.client.rep_table(120)), 10)

if __name__ == '__main__':
    unittest.main()
