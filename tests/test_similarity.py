import unittest

from nexusrag.index.similarity import cosine_similarity


class TestCosineSimilarity(unittest.TestCase):
    def test_identical_vectors(self):
        self.assertAlmostEqual(cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]), 1.0, places=9)

    def test_orthogonal_and_opposite(self):
        self.assertAlmostEqual(cosine_similarity([1.0, 0.0], [0.0, 1.0]), 0.0)
        self.assertAlmostEqual(cosine_similarity([1.0, 0.0], [-2.0, 0.0]), -1.0)

    def test_symmetric(self):
        a, b = [0.3, -1.2, 4.0], [2.5, 0.1, -0.7]
        self.assertEqual(cosine_similarity(a, b), cosine_similarity(b, a))

    def test_no_signal_cases_return_zero(self):
        self.assertEqual(cosine_similarity(None, [1.0]), 0.0)
        self.assertEqual(cosine_similarity([1.0], None), 0.0)
        self.assertEqual(cosine_similarity([], []), 0.0)
        self.assertEqual(cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0]), 0.0)
        self.assertEqual(cosine_similarity([0.0, 0.0], [1.0, 2.0]), 0.0)


if __name__ == "__main__":
    unittest.main()
