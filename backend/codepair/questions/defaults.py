# Built-in question bank installed at startup (SEED_DEFAULT_QUESTIONS).

DEFAULT_QUESTION_AUTHOR = "system"

DEFAULT_QUESTIONS = [
    {
        "id": "default-two-sum",
        "title": "Two Sum",
        "description": (
            "Given an array of integers nums and an integer target, return indices of the two numbers "
            "in the array such that they add up to target.\n\n"
            "You may assume that each input would have exactly one solution, and you may not use the "
            "same element twice."
        ),
        "examples": [
            {
                "input": "nums = [2,7,11,15], target = 9",
                "output": "[0,1]",
                "explanation": "Because nums[0] + nums[1] == 9, we return [0, 1]",
            },
            {
                "input": "nums = [3,2,4], target = 6",
                "output": "[1,2]",
            },
        ],
        "starter_code": {
            "javascript": "function twoSum(nums, target) {\n  // Write your solution here\n\n}",
            "python": "def two_sum(nums, target):\n    # Write your solution here\n    pass",
            "java": (
                "class Solution {\n    public int[] twoSum(int[] nums, int target) {\n"
                "        // Write your solution here\n\n    }\n}"
            ),
            "cpp": (
                "class Solution {\npublic:\n    vector<int> twoSum(vector<int>& nums, int target) {\n"
                "        // Write your solution here\n\n    }\n};"
            ),
        },
        "constraints": [
            "2 <= nums.length <= 10^4",
            "-10^9 <= nums[i] <= 10^9",
            "Only one valid answer exists.",
        ],
    },
    {
        "id": "default-reverse-string",
        "title": "Reverse String",
        "description": (
            "Write a function that reverses a string. The input string is given as an array of "
            "characters s.\n\nYou must do this by modifying the input array in-place with O(1) extra memory."
        ),
        "examples": [
            {
                "input": 's = ["h","e","l","l","o"]',
                "output": '["o","l","l","e","h"]',
            },
        ],
        "starter_code": {
            "javascript": "function reverseString(s) {\n  // Write your solution here\n\n}",
            "python": "def reverse_string(s):\n    # Write your solution here\n    pass",
            "java": (
                "class Solution {\n    public void reverseString(char[] s) {\n"
                "        // Write your solution here\n\n    }\n}"
            ),
            "cpp": (
                "class Solution {\npublic:\n    void reverseString(vector<char>& s) {\n"
                "        // Write your solution here\n\n    }\n};"
            ),
        },
        "constraints": [
            "1 <= s.length <= 10^5",
            "s[i] is a printable ascii character.",
        ],
    },
]
