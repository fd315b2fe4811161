"""Name pools used to build realistic alias local-parts."""

FIRST_NAMES = [
    "aaron", "abigail", "adam", "adrian", "aiden", "alex", "alice", "amanda",
    "amber", "amy", "andrea", "andrew", "angela", "anna", "anthony", "ashley",
    "austin", "barbara", "benjamin", "beth", "betty", "brandon", "brenda",
    "brian", "brittany", "caleb", "carl", "carol", "caroline", "catherine",
    "charles", "chloe", "chris", "christina", "claire", "cody", "connor",
    "cynthia", "daniel", "david", "deborah", "dennis", "diana", "donna",
    "dylan", "edward", "elena", "eli", "elizabeth", "emily", "emma", "eric",
    "ethan", "evan", "felix", "fiona", "frank", "gabriel", "gary", "george",
    "grace", "gregory", "hannah", "heather", "helen", "henry", "ian", "isaac",
    "isabella", "jack", "jacob", "jade", "james", "jane", "jason", "jeffrey",
    "jennifer", "jeremy", "jessica", "joan", "john", "jonathan", "jordan",
    "joseph", "joshua", "julia", "justin", "karen", "katherine", "kayla",
    "kevin", "kimberly", "kyle", "laura", "lauren", "leah", "liam", "lily",
    "linda", "logan", "lucas", "lucy", "madison", "maria", "mark", "mary",
    "matthew", "megan", "melissa", "michael", "michelle", "nancy", "natalie",
    "nathan", "nicholas", "nicole", "noah", "olivia", "owen", "patricia",
    "paul", "peter", "rachel", "rebecca", "richard", "robert", "ryan",
    "samantha", "samuel", "sandra", "sarah", "scott", "sean", "sophia",
    "stephanie", "steven", "susan", "taylor", "teresa", "timothy", "tyler",
    "victoria", "vincent", "william", "zachary", "zoe",
]

LAST_NAMES = [
    "adams", "alvarez", "anderson", "bailey", "baker", "barnes", "bell",
    "bennett", "brooks", "brown", "bryant", "butler", "campbell", "carter",
    "castillo", "chavez", "clark", "coleman", "collins", "cook", "cooper",
    "cox", "cruz", "davis", "diaz", "edwards", "evans", "fisher", "flores",
    "foster", "garcia", "gomez", "gonzalez", "gray", "green", "griffin",
    "gutierrez", "hall", "hamilton", "harris", "hayes", "hernandez", "hill",
    "howard", "hughes", "jackson", "jenkins", "jimenez", "johnson", "jones",
    "kelly", "kim", "king", "lewis", "long", "lopez", "martin", "martinez",
    "mendoza", "miller", "mitchell", "moore", "morales", "morgan", "morris",
    "murphy", "myers", "nelson", "nguyen", "ortiz", "parker", "patel",
    "perez", "perry", "peterson", "phillips", "powell", "price", "ramirez",
    "ramos", "reed", "reyes", "richardson", "rivera", "roberts", "robinson",
    "rodriguez", "rogers", "ross", "russell", "sanchez", "sanders", "shaw",
    "simmons", "smith", "stewart", "sullivan", "torres", "turner", "walker",
    "ward", "watson", "white", "wilson", "wood", "wright", "young",
]

# Role addresses every domain gets or that must never be generated.
RESERVED_LOCAL_PARTS = frozenset({
    "info", "admin", "abuse", "postmaster", "webmaster", "hostmaster", "noreply",
})
