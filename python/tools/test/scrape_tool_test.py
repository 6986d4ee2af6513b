import json
import os
import tempfile
import unittest

from crawler.redfin_cascade.errors import InvalidInputError
from tools.scrape_tool import build_arg_parser, resolve_input

CHICAGO_URL = "https://www.redfin.com/city/29470/IL/Chicago"


class TestScrapeTool_ResolveInput(unittest.TestCase):
    def test_flags_only(self):
        args = build_arg_parser().parse_args([
            "--start-url", CHICAGO_URL,
            "--results-wanted", "12",
            "--max-concurrency", "40",
            "--no-details",
            "--use-playwright",
        ])

        scrape_input = resolve_input(args)

        self.assertEqual(scrape_input.start_urls, [CHICAGO_URL])
        self.assertEqual(scrape_input.results_wanted, 12)
        self.assertEqual(scrape_input.max_concurrency, 10)
        self.assertFalse(scrape_input.collect_details)
        self.assertTrue(scrape_input.use_playwright)

    def test_flags_override_input_file(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, "input.json")
            with open(path, 'w', encoding='utf-8') as f:
                json.dump({"startUrl": CHICAGO_URL, "resultsWanted": 100, "maxPages": 2}, f)
            args = build_arg_parser().parse_args([
                "--input", path,
                "--start-url", "https://www.redfin.com/zipcode/98109",
                "--results-wanted", "5",
            ])

            scrape_input = resolve_input(args)

        self.assertEqual(scrape_input.start_urls, [CHICAGO_URL, "https://www.redfin.com/zipcode/98109"])
        self.assertEqual(scrape_input.results_wanted, 5)
        self.assertEqual(scrape_input.max_pages, 2)
        self.assertTrue(scrape_input.collect_details)

    def test_missing_start_url(self):
        args = build_arg_parser().parse_args([])

        with self.assertRaises(InvalidInputError):
            resolve_input(args)


if __name__ == "__main__":
    unittest.main()
