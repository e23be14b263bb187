import unittest
from services.sanitize import MAX_STRING_LENGTH, normalize_event_data, sanitize_event_data


class TestSanitizeEventData(unittest.TestCase):

    def test_keeps_leaf_values(self):
        data = {"name": "Mystery", "score": 3, "ratio": 0.5, "done": True, "note": None}
        self.assertEqual(sanitize_event_data(data), data)

    def test_drops_function_values(self):
        result = sanitize_event_data({"dramaId": "d1", "callback": lambda: None, "handler": print})

        self.assertEqual(result, {"dramaId": "d1"})
        self.assertNotIn("callback", result)

    def test_truncates_long_arrays_to_first_ten(self):
        result = sanitize_event_data({"clues": list(range(15))})

        self.assertEqual(result["clues"], list(range(10)))

    def test_array_items_are_reduced_to_a_shallow_form(self):
        result = sanitize_event_data({"attempts": [1, {"clue": "c1", "nested": {"x": 1}, "tags": ["a", "b"]}, object()]})

        self.assertEqual(result["attempts"], [1, {"clue": "c1", "tags": ["a", "b"]}, None])

    def test_long_array_of_non_leaf_items_keeps_ten_items(self):
        result = sanitize_event_data({"grid": [[i, {"x": i}] for i in range(12)]})

        self.assertEqual(len(result["grid"]), 10)
        self.assertEqual(result["grid"][3], [3, None])

    def test_disallowed_array_items_hold_their_position(self):
        result = sanitize_event_data({"clues": [1, lambda: None, 2] + list(range(10))})

        self.assertEqual(result["clues"], [1, None, 2, 0, 1, 2, 3, 4, 5, 6])

    def test_nested_object_is_flattened_to_one_level(self):
        result = sanitize_event_data({"session": {"clueId": "c1", "deep": {"more": 1}, "attempts": [1, 2, {"x": 1}]}})

        self.assertEqual(result["session"], {"clueId": "c1", "attempts": [1, 2, None]})

    def test_drops_non_finite_numbers_and_unsupported_types(self):
        result = sanitize_event_data({
            "nan": float("nan"),
            "inf": float("inf"),
            "raw": b"bytes",
            "set": {1, 2},
            "ok": 1.5,
        })

        self.assertEqual(result, {"ok": 1.5})

    def test_drops_invalid_keys(self):
        result = sanitize_event_data({"k" * 51: 1, 7: "seven", "kept": 1})

        self.assertEqual(result, {"kept": 1})

    def test_non_mapping_payload_yields_empty_object(self):
        self.assertEqual(sanitize_event_data(None), {})
        self.assertEqual(sanitize_event_data(["a", "b"]), {})
        self.assertEqual(sanitize_event_data("text"), {})


class TestNormalizeEventData(unittest.TestCase):

    def test_truncates_long_strings(self):
        result = normalize_event_data({"feedback": "x" * (MAX_STRING_LENGTH + 20)})

        self.assertEqual(len(result["feedback"]), MAX_STRING_LENGTH)

    def test_array_items_are_reduced_to_primitives(self):
        result = normalize_event_data({"tags": ["a", None, {"x": 1}, 2]})

        self.assertEqual(result["tags"], ["a", None, None, 2])

    def test_sanitized_long_array_survives_normalization(self):
        result = normalize_event_data(sanitize_event_data({"grid": [[i] for i in range(12)]}))

        self.assertEqual(result["grid"], [None] * 10)

    def test_flattens_nested_objects_into_dotted_keys(self):
        result = normalize_event_data({"session": {"clueId": "c1", "attempts": 2, "list": [1]}, "step": 4})

        self.assertEqual(result, {"session.clueId": "c1", "session.attempts": 2, "step": 4})

    def test_empty_payload(self):
        self.assertEqual(normalize_event_data({}), {})
        self.assertEqual(normalize_event_data(None), {})
